"""Resumable, rate-limited import of a paginated listing API."""

__version__ = "1.0.0"
