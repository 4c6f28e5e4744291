"""Custom exceptions for the ERP gateway.

Upstream failures are not exceptions: the Upstream Caller turns every
rejected or failed round trip into a typed ``GatewayFailure`` inside a
``DispatchResult``. The exceptions defined here signal misuse and lifecycle
problems of the gateway itself.

Examples:
    Handling an invalid deduplication key::

        from erp_gateway.exceptions import InvalidDedupKeyError

        try:
            result = await gateway.dispatch("/pedido/nuevopedido", "POST", body, key)
        except InvalidDedupKeyError as e:
            return problem(400, "Invalid idempotency key", e.message)

    Handling a shutdown race::

        from erp_gateway.exceptions import QueueClosedError

        try:
            outcome = await queue.submit(task)
        except QueueClosedError:
            logger.warning("queue.closed")
"""

from erp_gateway.models import DispatchResult


class GatewayError(Exception):
    """Base exception for all gateway errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class InvalidDedupKeyError(GatewayError):
    """A deduplication key was rejected before any work was done.

    Raised when a key exceeds the configured maximum length. Absent or
    empty keys are not errors; they simply disable deduplication.

    Attributes:
        message: Human-readable error description.
        key_length: Length of the rejected key.
        max_length: Configured maximum length.
    """

    def __init__(self, message: str, key_length: int, max_length: int) -> None:
        super().__init__(message)
        self.key_length = key_length
        self.max_length = max_length


class QueueClosedError(GatewayError):
    """A task was submitted to, or still pending in, a closed dispatch queue.

    Tasks already admitted run to completion; only tasks that never got an
    admission slot fail with this error.
    """



class InvalidParamsError(GatewayError):
    """Caller input is missing required parameters.

    Attributes:
        message: Human-readable error description.
        params: Names of the offending parameters.
    """

    def __init__(self, message: str, params: list[str]) -> None:
        super().__init__(message)
        self.params = params


class UpstreamDispatchError(GatewayError):
    """A multi-call operation stopped because one dispatch failed.

    Single dispatches return failures as values; operations built from many
    dispatches raise this so the caller-facing layer can render the failure.

    Attributes:
        message: Human-readable error description.
        result: The failed DispatchResult.
    """

    def __init__(self, message: str, result: DispatchResult) -> None:
        super().__init__(message)
        self.result = result
