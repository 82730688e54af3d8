"""sage-vbranch: virtual branches over a single Git working tree."""

__version__ = "0.3.0"
