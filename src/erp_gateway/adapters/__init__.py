"""Inbound adapters for the ERP gateway.

This package exposes the transport-agnostic gateway core over HTTP:

- http.py: FastAPI application (auth, request ids, problem responses)
- routes.py: public path segments mapped to upstream ERP paths
"""

from erp_gateway.adapters.http import create_app

__all__ = ["create_app"]
