"""
Configuration for AI Usage Guard.

Plan tiers and the YAML settings file.
"""
