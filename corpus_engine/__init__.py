"""Bulk ingestion and export tracking for the bias annotation corpus."""

__version__ = "0.1.0"
