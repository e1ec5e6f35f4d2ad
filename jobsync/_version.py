"""
Defines the package's version string.

This is the single source of truth for the version number. It is used in the
HTTP User-Agent header and for packaging.
"""

__version__ = "0.4.0"
