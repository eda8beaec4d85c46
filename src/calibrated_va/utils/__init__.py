"""
Utility functions for the VA calibration package.
"""

from .warning_suppression import suppress_upstream_warnings

__all__ = ['suppress_upstream_warnings']
