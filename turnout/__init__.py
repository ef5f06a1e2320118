"""Turnout - branch checkout with live progress."""

__version__ = "0.1.0"
