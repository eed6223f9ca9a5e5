"""
No Due - institutional clearance service.
"""

__version__ = "0.1.0"
