"""Core type definitions for the ERP gateway.

This module provides the data structures that flow through the gateway:
the immutable upstream request, the per-attempt outcome union, the retry
decision derived from it, the typed failure handed back to callers, and
the deduplication entry owned by the idempotency cache.

Examples:
    Describing an upstream call::

        from erp_gateway.models import UpstreamRequest

        request = UpstreamRequest(
            path="/pedido/nuevopedido",
            method="POST",
            body={"clienteId": 42, "items": [{"itemId": 7, "cantidad": 2}]},
        )

    Building results::

        ok = DispatchResult.success({"id": 1001}, attempts=1)
        failed = DispatchResult.failed(
            GatewayFailure(
                kind=FailureKind.UPSTREAM_REJECTED,
                status_code=400,
                detail="clienteId inexistente",
                attempts=1,
            )
        )
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

HttpMethod = Literal["GET", "POST"]


class FailureKind(str, Enum):
    """Final failure category surfaced to the caller-facing layer.

    Attributes:
        CREDENTIAL_REJECTED: Upstream answered 401/403. The configured
            credential is invalid and must be rotated by an operator.
        RATE_LIMITED: Upstream kept answering 429 until attempts ran out.
        TRANSIENT_UPSTREAM_FAILURE: Upstream kept answering 5xx until
            attempts ran out.
        UPSTREAM_REJECTED: Upstream rejected the payload (non-retryable 3xx/4xx).
        NETWORK_FAILURE: Connection error or timeout on every attempt.
    """

    CREDENTIAL_REJECTED = "credential_rejected"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_UPSTREAM_FAILURE = "transient_upstream_failure"
    UPSTREAM_REJECTED = "upstream_rejected"
    NETWORK_FAILURE = "network_failure"


class Classification(str, Enum):
    """What the backoff classifier makes of a single attempt's outcome."""

    FATAL_CLIENT = "fatal_client"
    RATE_LIMITED = "rate_limited"
    RETRYABLE = "retryable"
    FATAL_UPSTREAM = "fatal_upstream"


class UpstreamRequest(BaseModel):
    """An operation to forward to the upstream ERP.

    The payload is opaque: GET requests carry ``params`` as the query string,
    POST requests carry ``body`` as JSON. Immutable once submitted.

    Attributes:
        path: Upstream path relative to the configured base URL.
        method: GET or POST.
        params: Query parameters.
        body: JSON-serializable request body.
        headers: Extra headers for this call. The credential header is added
            by the Upstream Caller and cannot be overridden here.
    """

    path: str = Field(..., min_length=1, examples=["/items", "/pedido/nuevopedido"])
    method: HttpMethod = Field(default="GET")
    params: dict[str, Any] | None = Field(default=None)
    body: Any = Field(default=None)
    headers: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Require a relative path so the host stays fixed per process.

        Raises:
            ValueError: If the path is an absolute URL.
        """
        if "://" in v:
            raise ValueError("path must be relative to the upstream base URL")
        if not v.startswith("/"):
            v = "/" + v
        return v


class Success(BaseModel):
    """The upstream accepted the call; ``body`` is the decoded response."""

    kind: Literal["success"] = "success"
    status_code: int = 200
    body: Any = None

    model_config = {"frozen": True}


class UpstreamRejected(BaseModel):
    """The upstream answered with a non-2xx status (redirects included).

    Attributes:
        status_code: HTTP status from the upstream (300-599).
        body: Response body as text, kept verbatim for diagnostics.
        retry_after: Raw Retry-After header value, if any.
    """

    kind: Literal["rejected"] = "rejected"
    status_code: int = Field(..., ge=300, le=599)
    body: str = ""
    retry_after: str | None = None

    model_config = {"frozen": True}


class TransportFailure(BaseModel):
    """No HTTP response was obtained (connection error or timeout)."""

    kind: Literal["transport"] = "transport"
    reason: str
    timed_out: bool = False

    model_config = {"frozen": True}


UpstreamOutcome = Annotated[
    Success | UpstreamRejected | TransportFailure,
    Field(discriminator="kind"),
]


class RetryDecision(BaseModel):
    """Next step after an attempt: retry after a delay, or stop with a failure.

    Derived solely from the attempt's outcome and the attempt number.

    Attributes:
        action: "retry" or "fail".
        delay_seconds: Backoff before the next attempt (retry only).
        failure_kind: Final failure category (fail only).
    """

    action: Literal["retry", "fail"]
    delay_seconds: float | None = Field(default=None, ge=0)
    failure_kind: FailureKind | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_consistency(self) -> "RetryDecision":
        """Validate that retry carries a delay and fail carries a kind.

        Raises:
            ValueError: If action and payload fields disagree.
        """
        if self.action == "retry" and (self.delay_seconds is None or self.failure_kind is not None):
            raise ValueError("retry decisions need delay_seconds and no failure_kind")
        if self.action == "fail" and (self.failure_kind is None or self.delay_seconds is not None):
            raise ValueError("fail decisions need failure_kind and no delay_seconds")
        return self

    @classmethod
    def retry_after(cls, delay_seconds: float) -> "RetryDecision":
        return cls(action="retry", delay_seconds=delay_seconds)

    @classmethod
    def fail(cls, kind: FailureKind) -> "RetryDecision":
        return cls(action="fail", failure_kind=kind)

    @property
    def should_retry(self) -> bool:
        return self.action == "retry"


class GatewayFailure(BaseModel):
    """Typed failure returned to the caller-facing layer.

    Attributes:
        kind: Failure category.
        status_code: Upstream HTTP status, None for network failures.
        detail: Upstream diagnostic text, unaltered except that the
            configured credential is masked.
        retry_after: Retry-After hint from the last upstream response.
        attempts: Number of upstream attempts made.
    """

    kind: FailureKind
    status_code: int | None = None
    detail: str = ""
    retry_after: str | None = None
    attempts: int = Field(default=1, ge=0)

    model_config = {"frozen": True}


class DispatchResult(BaseModel):
    """Result of a gateway dispatch: a decoded body or a typed failure.

    Attributes:
        ok: True if the upstream call succeeded.
        body: Decoded success body (None on failure).
        failure: Failure details (None on success).
        attempts: Number of upstream attempts made.

    Examples:
        >>> DispatchResult.success({"id": 1}, attempts=2).ok
        True
    """

    ok: bool
    body: Any = None
    failure: GatewayFailure | None = None
    attempts: int = Field(default=1, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_failure_with_ok(self) -> "DispatchResult":
        """Validate that failure is present if and only if ok is False.

        Raises:
            ValueError: If ok/failure consistency is violated.
        """
        if self.ok and self.failure is not None:
            raise ValueError("failure must be None when ok is True")
        if not self.ok and self.failure is None:
            raise ValueError("failure must be provided when ok is False")
        return self

    @classmethod
    def success(cls, body: Any, attempts: int = 1) -> "DispatchResult":
        return cls(ok=True, body=body, attempts=attempts)

    @classmethod
    def failed(cls, failure: GatewayFailure) -> "DispatchResult":
        return cls(ok=False, failure=failure, attempts=failure.attempts)


class DedupEntry(BaseModel):
    """A remembered successful result for a deduplication key.

    Owned by the deduplication store. Entries are never mutated after
    insertion; they are only read, expired or evicted.
    """

    key: str = Field(..., min_length=1)
    result: DispatchResult
    recorded_at: datetime
    expires_at: datetime

    model_config = {"frozen": True}

    @field_validator("expires_at")
    @classmethod
    def validate_expires_after_recorded(cls, v: datetime, info: Any) -> datetime:
        if "recorded_at" in info.data and v <= info.data["recorded_at"]:
            raise ValueError("expires_at must be after recorded_at")
        return v

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
