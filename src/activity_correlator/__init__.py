"""Correlate activity streams into one accounting of where time went."""

__version__ = "0.1.0"
