"""Header helpers for the ERP gateway.

This module provides functions for:
- Building the fixed header set sent to the upstream ERP
- Case-insensitive header lookup and merging
- Reading the deduplication key of an inbound call
- Interpreting Retry-After hints
- Masking the credential out of diagnostic text
"""

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

IDEMPOTENCY_HEADER = "idempotency-key"

# Body field accepted as a deduplication key when the header is absent
EXTERNAL_ID_FIELD = "externalId"

BASE_UPSTREAM_HEADERS = {
    "content-type": "application/json",
    "accept": "application/json",
}

MASK = "***"


def get_header_value(
    headers: dict[str, str],
    header_name: str,
    default: str | None = None,
) -> str | None:
    """Get header value with case-insensitive lookup.

    Example:
        >>> get_header_value({"Idempotency-Key": "abc"}, "idempotency-key")
        'abc'
        >>> get_header_value({}, "missing", "default")
        'default'
    """
    header_name_lower = header_name.lower()

    for key, value in headers.items():
        if key.lower() == header_name_lower:
            return value

    return default


def merge_headers(*header_dicts: dict[str, str]) -> dict[str, str]:
    """Merge header dictionaries; later ones win, keys are lowercased.

    Example:
        >>> merge_headers({"Accept": "text/html"}, {"accept": "application/json"})
        {'accept': 'application/json'}
    """
    result: dict[str, str] = {}
    for headers in header_dicts:
        for key, value in headers.items():
            result[key.lower()] = value
    return result


def build_upstream_headers(
    credential_header: str,
    credential_value: str,
    extra: dict[str, str] | None = None,
) -> dict[str, str]:
    """Build the headers for one upstream call.

    JSON content negotiation headers come first, per-call extras next and
    the credential last, so no caller can replace the configured credential.

    Example:
        >>> build_upstream_headers("authorization", "tok", {"X-Trace": "1"})
        {'content-type': 'application/json', 'accept': 'application/json', 'x-trace': '1', 'authorization': 'tok'}
    """
    return merge_headers(
        BASE_UPSTREAM_HEADERS,
        extra or {},
        {credential_header: credential_value},
    )


def extract_dedup_key(headers: dict[str, str], body: Any = None) -> str | None:
    """Return the deduplication key of an inbound call, or None.

    The Idempotency-Key header wins; otherwise a non-empty ``externalId``
    field of a JSON object body is used.

    Example:
        >>> extract_dedup_key({"Idempotency-Key": " k-1 "})
        'k-1'
        >>> extract_dedup_key({}, {"externalId": 991})
        '991'
        >>> extract_dedup_key({}, [1, 2]) is None
        True
    """
    value = get_header_value(headers, IDEMPOTENCY_HEADER)
    if value is not None and value.strip():
        return value.strip()

    if isinstance(body, dict):
        external_id = body.get(EXTERNAL_ID_FIELD)
        if external_id is not None and str(external_id).strip():
            return str(external_id).strip()

    return None


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Convert a Retry-After value into seconds.

    Accepts both delta-seconds and HTTP-date forms. Unparseable values
    yield None; dates in the past yield 0.

    Example:
        >>> parse_retry_after("120")
        120.0
        >>> parse_retry_after("soon") is None
        True
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        return max(float(value), 0.0)
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max((when - now).total_seconds(), 0.0)


def mask_secret(text: str, secret: str) -> str:
    """Replace every occurrence of ``secret`` in ``text``.

    Example:
        >>> mask_secret("token abc rejected", "abc")
        'token *** rejected'
    """
    if not secret:
        return text
    return text.replace(secret, MASK)
