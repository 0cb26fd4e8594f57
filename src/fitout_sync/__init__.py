"""
Optimistic mutation cache for fit-out project records.
"""

__version__ = "0.1.0"
