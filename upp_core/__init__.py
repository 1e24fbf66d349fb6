"""
UPP offline core: local cache, mutation queue and sync for the Universal
Printing Press dashboard.
"""

__version__ = "1.0.0"
