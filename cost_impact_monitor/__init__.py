"""
Cost Impact Monitor.

Watches configuration spaces for the cost impact of pending and applied
changes and tracks how accurate its predictions turn out to be.
"""

__version__ = "1.0.0"
