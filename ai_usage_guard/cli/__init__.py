"""
Command line interface for AI Usage Guard.
"""
