"""Duplicate detection and consolidation for bilingual incident records."""

__version__ = "1.0.0"
