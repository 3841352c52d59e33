"""
Storage layer for AI Usage Guard.

Reads the local newline-delimited JSON session logs.
"""
