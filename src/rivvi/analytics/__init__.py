"""
Dashboard, campaign and run analytics.
"""
