"""FastAPI surface in front of the gateway.

This module exposes the gateway over HTTP for backends that cannot talk to
the ERP directly. Every inbound request:

1. Gets a request id (``X-Request-Id`` from the caller, or a fresh UUID),
   bound to the log context and echoed on the response
2. Is authenticated with ``Authorization: Bearer <api_key>``, except for the
   public ``/``, ``/health`` and ``/metrics`` routes
3. Is forwarded through ``Gateway.dispatch`` and the DispatchResult is
   turned into a JSON response, or into an RFC 7807 problem document

Besides the /erp/ pass-through routes, ``GET /analytics/top-vendidos`` ranks
items by quantity sold, paging invoices or orders through the gateway.

Failure kinds map to HTTP statuses as follows:

    credential_rejected        -> 502 DUX_UNAUTHORIZED
    rate_limited               -> 429 DUX_RATE_LIMIT (Retry-After kept)
    transient_upstream_failure -> 502 DUX_ERROR
    upstream_rejected          -> 502 DUX_ERROR (upstreamStatus in the body)
    network_failure            -> 504 NETWORK_ERROR

Examples:
    Serving the gateway::

        from erp_gateway.adapters.http import create_app
        from erp_gateway.config import GatewayConfig
        from erp_gateway.core import build_gateway

        config = GatewayConfig.from_env()
        app = create_app(build_gateway(config), config)

    Calling it::

        curl -X POST http://localhost:3000/erp/pedido \\
          -H "Authorization: Bearer $API_KEY" \\
          -H "Idempotency-Key: pedido-42-0001" \\
          -d '{"clienteId": 42, "items": []}'
"""

import secrets
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from erp_gateway import __version__
from erp_gateway.adapters.routes import (
    READ_ROUTES,
    WRITE_ROUTES,
    missing_write_fields,
    read_params,
)
from erp_gateway.config import GatewayConfig
from erp_gateway.core.analytics import TopSoldQuery, top_sold
from erp_gateway.core.gateway import Gateway
from erp_gateway.exceptions import (
    InvalidDedupKeyError,
    InvalidParamsError,
    QueueClosedError,
    UpstreamDispatchError,
)
from erp_gateway.models import DispatchResult, FailureKind
from erp_gateway.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)
from erp_gateway.utils.headers import extract_dedup_key, get_header_value

logger = get_logger(__name__)

REQUEST_ID_HEADER = "x-request-id"
PUBLIC_PATHS = frozenset({"/", "/health", "/metrics"})
PROBLEM_MEDIA_TYPE = "application/problem+json"

# kind -> (HTTP status, title, code)
FAILURE_RESPONSES: dict[FailureKind, tuple[int, str, str]] = {
    FailureKind.CREDENTIAL_REJECTED: (502, "Bad Gateway", "DUX_UNAUTHORIZED"),
    FailureKind.RATE_LIMITED: (429, "Too Many Requests", "DUX_RATE_LIMIT"),
    FailureKind.TRANSIENT_UPSTREAM_FAILURE: (502, "Bad Gateway", "DUX_ERROR"),
    FailureKind.UPSTREAM_REJECTED: (502, "Bad Gateway", "DUX_ERROR"),
    FailureKind.NETWORK_FAILURE: (504, "Gateway Timeout", "NETWORK_ERROR"),
}

CREDENTIAL_REJECTED_DETAIL = "The ERP rejected the configured credential."

Handler = Callable[[Request], Awaitable[Response]]


def problem(
    request: Request,
    status: int,
    title: str,
    detail: str,
    code: str,
    headers: dict[str, str] | None = None,
    **extras: Any,
) -> JSONResponse:
    """Build an ``application/problem+json`` response.

    Example:
        >>> problem(request, 404, "Not Found", "Resource not found", "NOT_FOUND")
    """
    content = {
        "type": "about:blank",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.url.path,
        "requestId": getattr(request.state, "request_id", None),
        "code": code,
        **extras,
    }
    return JSONResponse(
        content=content,
        status_code=status,
        headers=headers,
        media_type=PROBLEM_MEDIA_TYPE,
    )


def failure_response(request: Request, result: DispatchResult) -> JSONResponse:
    """Convert a failed DispatchResult into a problem response."""
    failure = result.failure
    assert failure is not None
    status, title, code = FAILURE_RESPONSES[failure.kind]

    detail = failure.detail
    if failure.kind is FailureKind.CREDENTIAL_REJECTED:
        # Operators read the upstream text in the logs; callers get a fixed message
        detail = CREDENTIAL_REJECTED_DETAIL

    headers = None
    if failure.kind is FailureKind.RATE_LIMITED and failure.retry_after:
        headers = {"Retry-After": failure.retry_after}

    extras: dict[str, Any] = {"kind": failure.kind.value, "attempts": failure.attempts}
    if failure.status_code is not None:
        extras["upstreamStatus"] = failure.status_code

    return problem(request, status, title, detail, code, headers=headers, **extras)


def result_response(request: Request, result: DispatchResult) -> Response:
    if not result.ok:
        return failure_response(request, result)
    return JSONResponse(content=result.body)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and binds it to the log context."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        clear_request_context()
        bind_request_context(
            request_id=request_id,
            method=request.method,
            route=request.url.path,
        )
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-Id"] = request_id
        return response


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Requires ``Authorization: Bearer <api_key>`` on non-public routes.

    Attributes:
        api_key: Expected key. None disables the check.
    """

    def __init__(self, app: Any, api_key: str | None) -> None:
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if self.api_key is None or request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        auth = get_header_value(dict(request.headers), "authorization", "") or ""
        if not auth.startswith("Bearer "):
            return problem(
                request, 401, "Unauthorized", "Missing Authorization header", "MISSING_API_KEY"
            )

        key = auth[len("Bearer ") :].strip()
        if not secrets.compare_digest(key.encode(), self.api_key.encode()):
            logger.warning("http.invalid_api_key", path=request.url.path)
            return problem(request, 403, "Forbidden", "Invalid API key", "INVALID_API_KEY")

        return await call_next(request)


def _read_handler(resource: str, upstream_path: str) -> Handler:
    async def handler(request: Request) -> Response:
        gateway: Gateway = request.app.state.gateway
        params = read_params(resource, request.query_params.multi_items())
        try:
            result = await gateway.dispatch(upstream_path, "GET", params)
        except QueueClosedError:
            return _shutting_down(request)
        return result_response(request, result)

    handler.__name__ = f"read_{resource.replace('-', '_').replace('/', '_')}"
    return handler


def _write_handler(operation: str, upstream_path: str) -> Handler:
    async def handler(request: Request) -> Response:
        gateway: Gateway = request.app.state.gateway
        try:
            body = await request.json()
        except ValueError:
            return problem(
                request, 400, "Bad Request", "Request body must be valid JSON", "INVALID_JSON"
            )

        missing = missing_write_fields(operation, body)
        if missing:
            return problem(
                request,
                400,
                "Bad Request",
                "Missing required fields",
                "INVALID_PARAMS",
                invalidParams=missing,
            )

        dedup_key = extract_dedup_key(dict(request.headers), body)
        try:
            result = await gateway.dispatch(upstream_path, "POST", body, dedup_key=dedup_key)
        except InvalidDedupKeyError as e:
            return problem(
                request,
                400,
                "Bad Request",
                e.message,
                "INVALID_IDEMPOTENCY_KEY",
                maxLength=e.max_length,
            )
        except QueueClosedError:
            return _shutting_down(request)
        return result_response(request, result)

    handler.__name__ = f"write_{operation.replace('-', '_').replace('/', '_')}"
    return handler


def _shutting_down(request: Request) -> JSONResponse:
    return problem(
        request, 503, "Service Unavailable", "Gateway is shutting down", "SHUTTING_DOWN"
    )


def create_app(gateway: Gateway, config: GatewayConfig) -> FastAPI:
    """Build the FastAPI application serving ``gateway``.

    The gateway's background work starts with the application and the
    gateway is closed when the application shuts down.

    Args:
        gateway: The gateway to expose.
        config: Configuration (inbound API key, upstream base URL).

    Returns:
        The FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        gateway.start()
        logger.info("http.started", upstream=config.upstream_base_url)
        try:
            yield
        finally:
            await gateway.aclose()
            logger.info("http.stopped")

    app = FastAPI(
        title="ERP Gateway",
        description="Rate-limited, idempotent gateway to the Dux ERP REST API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    api_key = config.api_key.get_secret_value() if config.api_key is not None else None
    # Added first so it runs inside the request id middleware
    app.add_middleware(ApiKeyMiddleware, api_key=api_key)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"name": "ERP Gateway", "base": config.upstream_base_url, "ok": True}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "queueDepth": gateway.queue.depth}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    for resource, upstream_path in READ_ROUTES.items():
        app.add_api_route(f"/erp/{resource}", _read_handler(resource, upstream_path), methods=["GET"])

    for operation, upstream_path in WRITE_ROUTES.items():
        app.add_api_route(
            f"/erp/{operation}", _write_handler(operation, upstream_path), methods=["POST"]
        )

    @app.get("/analytics/top-vendidos")
    async def top_vendidos(request: Request) -> Response:
        try:
            query = TopSoldQuery.from_query(request.query_params)
        except InvalidParamsError as e:
            return problem(
                request, 400, "Bad Request", e.message, "INVALID_PARAMS", invalidParams=e.params
            )

        try:
            report = await top_sold(gateway, query)
        except UpstreamDispatchError as e:
            return failure_response(request, e.result)
        except QueueClosedError:
            return _shutting_down(request)
        return JSONResponse(content=report.to_response())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code == 404:
            return problem(request, 404, "Not Found", "Resource not found", "NOT_FOUND")
        return problem(
            request,
            exc.status_code,
            "Method Not Allowed" if exc.status_code == 405 else "Error",
            str(exc.detail),
            "HTTP_ERROR",
        )

    return app
