"""
Rate-limited, idempotent gateway to a third-party ERP REST API.

This package serializes calls to the upstream ERP through a single
rate-limited dispatch lane, retries transient failures with exponential
backoff, and collapses repeated write operations that share a
deduplication key so the upstream side effect happens at most once.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
