"""
Campaigns, campaign templates and campaign requests.
"""
