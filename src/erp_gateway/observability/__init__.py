"""Observability utilities for the ERP gateway.

This package provides monitoring and debugging capabilities:
- Prometheus metrics for dispatches, upstream attempts and queue depth
- Structured logging with request-scoped context

These tools help operators see how the single upstream lane is being used
and why calls fail.
"""

from erp_gateway.observability.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)
from erp_gateway.observability.metrics import (
    record_attempt,
    record_cleanup,
    record_dispatch,
)

__all__ = [
    "bind_request_context",
    "clear_request_context",
    "configure_logging",
    "get_logger",
    "record_attempt",
    "record_dispatch",
    "record_cleanup",
]
