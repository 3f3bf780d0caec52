"""
Rivvi: multi-tenant voice-AI call campaign service.
"""

__version__ = "0.1.0"
