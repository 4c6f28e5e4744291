"""Backoff classifier for upstream outcomes.

Pure functions that turn one attempt's outcome into a classification and,
together with the attempt number, into the next step of the retry loop:

    401/403            -> FATAL_CLIENT    -> fail(credential_rejected) at once
    429                -> RATE_LIMITED    -> retry, then fail(rate_limited)
    >=500, no response -> RETRYABLE       -> retry, then fail(transient/network)
    other 3xx/4xx      -> FATAL_UPSTREAM  -> fail(upstream_rejected) at once

Retries wait ``base * 2^(attempt - 1)``: with the defaults (0.5s base,
3 attempts) that is 0.5s before the second attempt and 1s before the third.

Examples:
    >>> policy = RetryPolicy()
    >>> decide(UpstreamRejected(status_code=503), attempt=1, policy=policy).delay_seconds
    0.5
    >>> decide(UpstreamRejected(status_code=401), attempt=1, policy=policy).failure_kind
    <FailureKind.CREDENTIAL_REJECTED: 'credential_rejected'>
"""

from dataclasses import dataclass

from erp_gateway.config import GatewayConfig
from erp_gateway.models import (
    Classification,
    FailureKind,
    RetryDecision,
    Success,
    TransportFailure,
    UpstreamOutcome,
    UpstreamRejected,
)

CREDENTIAL_STATUSES = frozenset({401, 403})
RATE_LIMIT_STATUS = 429


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and backoff base for the retry loop."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.5

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay_seconds=config.backoff_base_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after ``attempt`` (1-based) before the next one."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return self.base_delay_seconds * (2 ** (attempt - 1))


def classify(outcome: UpstreamOutcome) -> Classification | None:
    """Classify a single attempt's outcome.

    Returns:
        None for a success, otherwise the failure classification.
    """
    if isinstance(outcome, Success):
        return None
    if isinstance(outcome, TransportFailure):
        return Classification.RETRYABLE

    status = outcome.status_code
    if status in CREDENTIAL_STATUSES:
        return Classification.FATAL_CLIENT
    if status == RATE_LIMIT_STATUS:
        return Classification.RATE_LIMITED
    if status >= 500:
        return Classification.RETRYABLE
    return Classification.FATAL_UPSTREAM


def failure_kind(outcome: UpstreamRejected | TransportFailure) -> FailureKind:
    """Map a failed outcome to the failure kind surfaced when retries stop."""
    if isinstance(outcome, TransportFailure):
        return FailureKind.NETWORK_FAILURE

    status = outcome.status_code
    if status in CREDENTIAL_STATUSES:
        return FailureKind.CREDENTIAL_REJECTED
    if status == RATE_LIMIT_STATUS:
        return FailureKind.RATE_LIMITED
    if status >= 500:
        return FailureKind.TRANSIENT_UPSTREAM_FAILURE
    return FailureKind.UPSTREAM_REJECTED


def decide(outcome: UpstreamOutcome, attempt: int, policy: RetryPolicy) -> RetryDecision:
    """Decide whether to retry after a failed attempt.

    Args:
        outcome: The failed attempt's outcome.
        attempt: 1-based number of the attempt that produced ``outcome``.
        policy: Attempt ceiling and backoff base.

    Returns:
        retry_after(delay) while retryable attempts remain, fail(kind) otherwise.

    Raises:
        ValueError: If called with a successful outcome.
    """
    classification = classify(outcome)
    if classification is None:
        raise ValueError("decide() is only defined for failed outcomes")

    retryable = classification in (Classification.RETRYABLE, Classification.RATE_LIMITED)
    if retryable and attempt < policy.max_attempts:
        return RetryDecision.retry_after(policy.delay_for(attempt))

    return RetryDecision.fail(failure_kind(outcome))  # type: ignore[arg-type]
