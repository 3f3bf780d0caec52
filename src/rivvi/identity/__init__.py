"""
Identity-provider webhook receiver syncing users and organizations.
"""
