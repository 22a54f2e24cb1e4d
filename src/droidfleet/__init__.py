"""
droidfleet - LDPlayer fleet script execution engine
"""

__version__ = "1.0.0"
