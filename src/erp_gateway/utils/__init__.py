"""Utility modules for the ERP gateway."""

from .headers import (
    build_upstream_headers,
    extract_dedup_key,
    get_header_value,
    mask_secret,
    parse_retry_after,
)

__all__ = [
    "build_upstream_headers",
    "extract_dedup_key",
    "get_header_value",
    "mask_secret",
    "parse_retry_after",
]
