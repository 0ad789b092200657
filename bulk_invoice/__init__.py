"""Bulk customer invoice builder."""

__version__ = "1.0.0"
