"""
Shared infrastructure: database, logging, exceptions and common schemas.
"""
