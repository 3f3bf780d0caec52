"""
Patient records deduplicated across organizations.
"""
