"""Art Platform account and session backend"""

__version__ = "1.0.0"
