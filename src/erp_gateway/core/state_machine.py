"""Retry state machine for upstream calls.

One upstream call moves through three states:

    ATTEMPTING -> BACKOFF -> ATTEMPTING -> ... -> TERMINAL

ATTEMPTING runs one attempt and asks the classifier what to do next.
BACKOFF sleeps for the decided delay. The attempt callable is expected to
re-enter the dispatch queue on every call, so the queue's execution slot is
held only while an attempt is on the wire, never across a backoff sleep.

Examples:
    Driving an upstream call::

        from erp_gateway.core.state_machine import run_with_retries

        result = await run_with_retries(
            attempt=lambda: queue.submit(lambda: caller.round_trip(request)),
            policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.5),
            path=request.path,
        )
        if result.failure_kind is None:
            body = result.outcome.body
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

from erp_gateway.core.classifier import RetryPolicy, classify, decide
from erp_gateway.models import (
    FailureKind,
    RetryDecision,
    UpstreamOutcome,
    UpstreamRejected,
)
from erp_gateway.observability.logging import get_logger
from erp_gateway.utils.headers import parse_retry_after

logger = get_logger(__name__)


class CallState(str, Enum):
    """Represents where an upstream call is in its retry lifecycle.

    Attributes:
        ATTEMPTING: An attempt is queued or on the wire.
        BACKOFF: Waiting before the next attempt; no queue slot is held.
        TERMINAL: Succeeded, or failed with no retry left.
    """

    ATTEMPTING = "ATTEMPTING"
    BACKOFF = "BACKOFF"
    TERMINAL = "TERMINAL"


class StateResult:
    """Final state of an upstream call.

    Attributes:
        outcome: Outcome of the last attempt.
        attempts: Number of attempts made.
        failure_kind: None on success, otherwise the final failure kind.
        delays: Backoff delays slept between attempts, in order.
    """

    def __init__(
        self,
        outcome: UpstreamOutcome,
        attempts: int,
        failure_kind: FailureKind | None = None,
        delays: list[float] | None = None,
    ) -> None:
        self.outcome = outcome
        self.attempts = attempts
        self.failure_kind = failure_kind
        self.delays = delays or []

    @property
    def succeeded(self) -> bool:
        return self.failure_kind is None


async def run_with_retries(
    attempt: Callable[[], Awaitable[UpstreamOutcome]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    path: str = "",
) -> StateResult:
    """Run attempts until one succeeds or the classifier says stop.

    Args:
        attempt: Performs one attempt; called once per ATTEMPTING entry.
        policy: Attempt ceiling and backoff base.
        sleep: Coroutine used for BACKOFF.
        path: Upstream path, for log context only.

    Returns:
        StateResult describing the last attempt.
    """
    state = CallState.ATTEMPTING
    attempts = 0
    delays: list[float] = []
    outcome: UpstreamOutcome | None = None
    decision: RetryDecision | None = None

    while state is not CallState.TERMINAL:
        if state is CallState.ATTEMPTING:
            attempts += 1
            outcome = await attempt()
            classification = classify(outcome)

            if classification is None:
                decision = None
                state = CallState.TERMINAL
                continue

            decision = decide(outcome, attempts, policy)
            logger.info(
                "upstream.attempt_failed",
                path=path,
                attempt=attempts,
                classification=classification.value,
                status_code=getattr(outcome, "status_code", None),
                will_retry=decision.should_retry,
            )
            state = CallState.BACKOFF if decision.should_retry else CallState.TERMINAL

        elif state is CallState.BACKOFF:
            assert decision is not None and decision.delay_seconds is not None
            retry_after = outcome.retry_after if isinstance(outcome, UpstreamRejected) else None
            logger.info(
                "upstream.backoff",
                path=path,
                attempt=attempts,
                delay_seconds=decision.delay_seconds,
                retry_after=retry_after,
                retry_after_seconds=parse_retry_after(retry_after),
            )
            await sleep(decision.delay_seconds)
            delays.append(decision.delay_seconds)
            state = CallState.ATTEMPTING

    assert outcome is not None
    return StateResult(
        outcome=outcome,
        attempts=attempts,
        failure_kind=decision.failure_kind if decision is not None else None,
        delays=delays,
    )
