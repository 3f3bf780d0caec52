"""
Voice provider webhook receivers (post-call analysis and inbound routing).
"""
