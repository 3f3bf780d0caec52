"""
LLM-assisted campaign content generation.
"""
