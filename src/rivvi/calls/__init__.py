"""
Call records and manual call placement.
"""
