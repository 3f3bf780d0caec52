"""
Organizations (tenants), their members and office hours.
"""
