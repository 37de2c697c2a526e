"""
Musterbook Platform

Subscription and billing lifecycle for the Musterbook HR backend.
"""

__version__ = "1.0.0"
