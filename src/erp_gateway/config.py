"""Configuration module for the ERP gateway.

This module provides the GatewayConfig class that holds every tunable of the
gateway: the upstream host and credential, the dispatch cadence, the retry
policy, the deduplication window and the inbound API key.

Example:
    Basic usage with defaults:

        >>> config = GatewayConfig()
        >>> config.dispatch_interval_seconds
        5.0
        >>> config.max_attempts
        3

    Loading from environment:

        >>> import os
        >>> os.environ['ERP_GATEWAY_UPSTREAM_TOKEN'] = 'secret-token'
        >>> os.environ['ERP_GATEWAY_DISPATCH_INTERVAL_SECONDS'] = '2.5'
        >>> config = GatewayConfig.from_env()

    Loading from dictionary:

        >>> config = GatewayConfig.from_dict({'max_attempts': 5, 'dedup_ttl_seconds': 3600})
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator

DEFAULT_UPSTREAM_BASE_URL = "https://erp.duxsoftware.com.ar/WSERP/rest/services"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class GatewayConfig(BaseModel):
    """Configuration for the ERP gateway.

    Attributes:
        upstream_base_url: Base URL of the ERP REST API. Configured once per
            process, never per call.
        upstream_token: Credential sent on every upstream call. Stored as a
            SecretStr so it is never rendered in reprs or logs.
        credential_header: Header name carrying the credential.
        credential_scheme: Optional scheme prefix ("Bearer"). Empty means the
            raw token is sent, which is what the Dux ERP expects.
        dispatch_interval_seconds: Minimum spacing between two admissions to
            the upstream. Default is 5 seconds.
        max_attempts: Total attempts per upstream call, first one included.
        backoff_base_seconds: Base delay for exponential backoff; the delay
            before attempt n+1 is base * 2^(n-1).
        request_timeout_seconds: Deadline of a single upstream round trip.
        dedup_ttl_seconds: How long a successful result is remembered for
            its deduplication key (1-604800).
        dedup_max_entries: Capacity of the deduplication table; the oldest
            entry is evicted when full.
        dedup_key_max_length: Longest accepted deduplication key.
        cleanup_interval_seconds: Period of the expired-entry sweeper.
        api_key: Inbound bearer key for the HTTP surface. None disables
            inbound authentication.
        log_level: Log level name.
        log_json: Emit JSON logs when True, console logs otherwise.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    upstream_base_url: str = Field(
        default=DEFAULT_UPSTREAM_BASE_URL,
        description="Base URL of the upstream ERP REST API",
    )
    upstream_token: SecretStr = Field(
        default=SecretStr(""),
        description="Credential sent to the upstream on every call",
    )
    credential_header: str = Field(
        default="authorization",
        description="Header name carrying the upstream credential",
    )
    credential_scheme: Literal["", "Bearer"] = Field(
        default="",
        description="Scheme prefix for the credential header ('' sends the raw token)",
    )
    dispatch_interval_seconds: float = Field(
        default=5.0,
        description="Minimum spacing in seconds between upstream admissions",
    )
    max_attempts: int = Field(
        default=3,
        description="Total attempts per upstream call (1-10)",
    )
    backoff_base_seconds: float = Field(
        default=0.5,
        description="Base delay in seconds for exponential backoff",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Deadline in seconds for a single upstream round trip",
    )
    dedup_ttl_seconds: int = Field(
        default=86400,
        description="Time-to-live in seconds for deduplicated results (1-604800)",
    )
    dedup_max_entries: int = Field(
        default=10000,
        description="Maximum number of remembered deduplication keys",
    )
    dedup_key_max_length: int = Field(
        default=255,
        description="Maximum length of a deduplication key",
    )
    cleanup_interval_seconds: int = Field(
        default=300,
        description="Seconds between sweeps of expired deduplication entries",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Inbound bearer API key (None disables inbound auth)",
    )
    log_level: str = Field(default="INFO", description="Log level name")
    log_json: bool = Field(default=True, description="Emit JSON formatted logs")

    model_config = {"frozen": True}

    @field_validator("upstream_base_url")
    @classmethod
    def validate_upstream_base_url(cls, v: str) -> str:
        """Validate the upstream URL scheme and strip any trailing slash.

        Raises:
            ValueError: If the URL is not http(s).

        Example:
            >>> GatewayConfig(upstream_base_url="https://erp.example.com/api/").upstream_base_url
            'https://erp.example.com/api'
        """
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"upstream_base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @field_validator("credential_header")
    @classmethod
    def validate_credential_header(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("credential_header cannot be empty")
        return v

    @field_validator("dispatch_interval_seconds", "backoff_base_seconds")
    @classmethod
    def validate_non_negative_seconds(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"value must be >= 0, got {v}")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_request_timeout_seconds(cls, v: float) -> float:
        if not (0 < v <= 300):
            raise ValueError(f"request_timeout_seconds must be between 0 and 300, got {v}")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        """Validate the attempt ceiling.

        Raises:
            ValueError: If not between 1 and 10.
        """
        if not (1 <= v <= 10):
            raise ValueError(f"max_attempts must be between 1 and 10, got {v}")
        return v

    @field_validator("dedup_ttl_seconds")
    @classmethod
    def validate_dedup_ttl_seconds(cls, v: int) -> int:
        """Validate TTL is within acceptable range.

        Raises:
            ValueError: If TTL is not between 1 and 604800 (7 days).
        """
        if not (1 <= v <= 604800):
            raise ValueError(f"dedup_ttl_seconds must be between 1 and 604800 (7 days), got {v}")
        return v

    @field_validator("dedup_max_entries", "dedup_key_max_length", "cleanup_interval_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {v}. Valid levels are: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return level

    def credential_value(self) -> str:
        """Return the credential header value, scheme included.

        Example:
            >>> GatewayConfig(upstream_token="abc", credential_scheme="Bearer").credential_value()
            'Bearer abc'
        """
        token = self.upstream_token.get_secret_value()
        if self.credential_scheme:
            return f"{self.credential_scheme} {token}"
        return token

    @classmethod
    def from_env(cls, prefix: str = "ERP_GATEWAY_") -> "GatewayConfig":
        """Create configuration from environment variables.

        Variable names are the uppercase field names with the prefix, e.g.
        ERP_GATEWAY_UPSTREAM_TOKEN or ERP_GATEWAY_MAX_ATTEMPTS. Missing
        variables keep their default values.

        Args:
            prefix: Prefix for environment variable names.

        Returns:
            GatewayConfig instance populated from environment variables.
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "upstream_base_url": str,
            "upstream_token": str,
            "credential_header": str,
            "credential_scheme": str,
            "dispatch_interval_seconds": float,
            "max_attempts": int,
            "backoff_base_seconds": float,
            "request_timeout_seconds": float,
            "dedup_ttl_seconds": int,
            "dedup_max_entries": int,
            "dedup_key_max_length": int,
            "cleanup_interval_seconds": int,
            "api_key": str,
            "log_level": str,
            "log_json": bool,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is not None:
                if field_type is int:
                    config_dict[field_name] = int(env_value)
                elif field_type is float:
                    config_dict[field_name] = float(env_value)
                elif field_type is bool:
                    config_dict[field_name] = env_value.strip().lower() in ("1", "true", "yes", "on")
                else:
                    config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "GatewayConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)
