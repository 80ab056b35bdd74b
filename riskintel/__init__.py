"""Risk intelligence feed scanner."""

__version__ = "2.0.0"
