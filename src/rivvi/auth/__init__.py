"""
Bearer-token authentication and role-based access control.
"""
