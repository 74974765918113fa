"""
Futures setup scanner and alert engine
"""

__version__ = "0.1.0"
