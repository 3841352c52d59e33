"""
Core modules for AI Usage Guard.

This package contains the usage aggregation, burn rate estimation,
limit prediction and limit pause/resume logic.
"""
