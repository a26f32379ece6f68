"""Ingestion error types."""

from __future__ import annotations


class IngestionError(RuntimeError):
    """Raised when an ingestion run cannot proceed."""
