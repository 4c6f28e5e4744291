"""Upstream caller: one HTTP round trip per attempt, retried through the queue.

The caller owns the httpx client pointed at the configured ERP host and
adds the fixed credential header to every request. ``call()`` never raises
for upstream trouble: every rejected status, timeout or connection error
ends up as a typed ``GatewayFailure`` inside the returned DispatchResult.

Examples:
    >>> queue = DispatchQueue(interval_seconds=config.dispatch_interval_seconds)
    >>> caller = UpstreamCaller(config, queue)
    >>> result = await caller.call(UpstreamRequest(path="/items", params={"limit": 20}))
    >>> result.ok, result.attempts
    (True, 1)
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

import httpx

from erp_gateway.config import GatewayConfig
from erp_gateway.core.classifier import RetryPolicy, classify
from erp_gateway.core.dispatch_queue import DispatchQueue
from erp_gateway.core.state_machine import StateResult, run_with_retries
from erp_gateway.models import (
    DispatchResult,
    FailureKind,
    GatewayFailure,
    Success,
    TransportFailure,
    UpstreamOutcome,
    UpstreamRejected,
    UpstreamRequest,
)
from erp_gateway.observability.logging import get_logger
from erp_gateway.observability.metrics import record_attempt
from erp_gateway.utils.headers import build_upstream_headers, mask_secret

logger = get_logger(__name__)


class UpstreamCaller:
    """Performs upstream calls with classification-driven retries.

    Attributes:
        config: Gateway configuration (host, credential, timeouts).
        queue: Dispatch queue every attempt is submitted to.
        policy: Attempt ceiling and backoff base.
    """

    def __init__(
        self,
        config: GatewayConfig,
        queue: DispatchQueue,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the caller.

        Args:
            config: Gateway configuration.
            queue: Shared dispatch queue.
            client: Pre-built httpx client. When omitted one is created for
                the configured base URL and closed by ``aclose()``.
            transport: Transport for the created client (tests pass an
                ``httpx.MockTransport``).
            sleep: Coroutine used for backoff delays.
            policy: Retry policy; derived from ``config`` when omitted.
        """
        self.config = config
        self.queue = queue
        self.policy = policy or RetryPolicy.from_config(config)
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.upstream_base_url,
            timeout=httpx.Timeout(config.request_timeout_seconds),
            transport=transport,
        )

    async def call(self, request: UpstreamRequest) -> DispatchResult:
        """Forward ``request`` upstream, retrying per the classifier.

        Each attempt is a fresh submission to the dispatch queue; backoff
        sleeps happen outside the queue.

        Returns:
            DispatchResult with the decoded body, or a typed failure.

        Raises:
            QueueClosedError: If the gateway is shutting down.
        """
        result = await run_with_retries(
            attempt=lambda: self.queue.submit(lambda: self.round_trip(request)),
            policy=self.policy,
            sleep=self._sleep,
            path=request.path,
        )

        if result.succeeded:
            assert isinstance(result.outcome, Success)
            return DispatchResult.success(result.outcome.body, attempts=result.attempts)

        return DispatchResult.failed(self._build_failure(request, result))

    async def round_trip(self, request: UpstreamRequest) -> UpstreamOutcome:
        """Perform exactly one HTTP exchange and describe how it went."""
        headers = build_upstream_headers(
            self.config.credential_header,
            self.config.credential_value(),
            request.headers,
        )

        start = time.perf_counter()
        try:
            response = await self._client.request(
                request.method,
                request.path,
                params=request.params,
                json=request.body if request.method == "POST" else None,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            outcome: UpstreamOutcome = TransportFailure(
                reason=f"Upstream timed out ({type(exc).__name__})",
                timed_out=True,
            )
        except httpx.RequestError as exc:
            # Also undecodable bodies and redirect loops, not only connection errors
            outcome = TransportFailure(reason=f"{type(exc).__name__}: {exc}")
        else:
            outcome = self._to_outcome(response)
        latency = time.perf_counter() - start

        classification = classify(outcome)
        record_attempt(
            classification.value if classification is not None else "success",
            latency,
        )
        logger.debug(
            "upstream.attempt",
            method=request.method,
            path=request.path,
            outcome=outcome.kind,
            status_code=getattr(outcome, "status_code", None),
            latency_ms=int(latency * 1000),
        )
        return outcome

    @staticmethod
    def _to_outcome(response: httpx.Response) -> UpstreamOutcome:
        if 200 <= response.status_code < 300:
            return Success(status_code=response.status_code, body=_decode_body(response))

        return UpstreamRejected(
            status_code=response.status_code,
            body=response.text,
            retry_after=response.headers.get("retry-after"),
        )

    def _build_failure(self, request: UpstreamRequest, result: StateResult) -> GatewayFailure:
        assert result.failure_kind is not None
        outcome = result.outcome
        secret = self.config.upstream_token.get_secret_value()

        if isinstance(outcome, UpstreamRejected):
            status_code: int | None = outcome.status_code
            detail = outcome.body or f"Upstream responded with HTTP {outcome.status_code}"
            retry_after = outcome.retry_after
        else:
            assert isinstance(outcome, TransportFailure)
            status_code = None
            detail = outcome.reason
            retry_after = None

        failure = GatewayFailure(
            kind=result.failure_kind,
            status_code=status_code,
            detail=mask_secret(detail, secret),
            retry_after=retry_after,
            attempts=result.attempts,
        )

        if failure.kind is FailureKind.CREDENTIAL_REJECTED:
            logger.error(
                "upstream.credential_rejected",
                path=request.path,
                status_code=status_code,
                message="Upstream rejected the configured credential; rotate it",
            )
        else:
            logger.warning(
                "upstream.failed",
                path=request.path,
                kind=failure.kind.value,
                status_code=status_code,
                attempts=failure.attempts,
                retry_after=retry_after,
            )
        return failure

    async def aclose(self) -> None:
        """Close the HTTP client if this caller created it."""
        if self._owns_client:
            await self._client.aclose()


def _decode_body(response: httpx.Response) -> object:
    """Decode a success body: JSON when possible, text otherwise, None if empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
