"""Exports health study records into managed tables"""

__version__ = "1.0.0"
