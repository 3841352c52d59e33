"""
AI Usage Guard.

Usage accounting and limit prediction for rate-limited AI subscriptions.
"""

__version__ = "0.1.0"
