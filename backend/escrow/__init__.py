"""Escrow backend for the student services marketplace."""

__version__ = "1.0.0"
