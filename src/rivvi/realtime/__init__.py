"""
Real-time event publishing to managed pub/sub channels.
"""
