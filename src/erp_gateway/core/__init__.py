"""Core gateway logic.

This package contains the outbound request gateway:
- Classifier: what a single attempt's outcome means for the retry loop
- Dispatch queue: one rate-limited lane to the upstream
- State machine and upstream caller: attempts, backoff and typed failures
- Idempotency cache: at most one upstream side effect per dedup key
- Gateway: the facade composing all of the above
- Cleanup: sweeping expired dedup entries
- Analytics: top-sold ranking built from paged listings

The core is transport-agnostic on the inbound side; adapters wrap it for
specific web frameworks.
"""

from erp_gateway.core.gateway import Gateway, build_gateway

__all__ = ["Gateway", "build_gateway"]
