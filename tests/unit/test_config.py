"""Unit tests for configuration module.

Tests the GatewayConfig class including validation, factory methods,
credential rendering and immutability.
"""

import pytest
from pydantic import SecretStr, ValidationError

from erp_gateway.config import DEFAULT_UPSTREAM_BASE_URL, GatewayConfig


class TestGatewayConfigDefaults:
    """Tests for default configuration values."""

    def test_default_values(self) -> None:
        config = GatewayConfig()

        assert config.upstream_base_url == DEFAULT_UPSTREAM_BASE_URL
        assert config.credential_header == "authorization"
        assert config.credential_scheme == ""
        assert config.dispatch_interval_seconds == 5.0
        assert config.max_attempts == 3
        assert config.backoff_base_seconds == 0.5
        assert config.request_timeout_seconds == 30.0
        assert config.dedup_ttl_seconds == 86400
        assert config.dedup_max_entries == 10000
        assert config.dedup_key_max_length == 255
        assert config.api_key is None
        assert config.log_level == "INFO"

    def test_token_is_not_rendered(self) -> None:
        config = GatewayConfig(upstream_token="very-secret")
        assert "very-secret" not in repr(config)
        assert "very-secret" not in str(config.model_dump())


class TestValidation:
    def test_trailing_slash_stripped(self) -> None:
        config = GatewayConfig(upstream_base_url="https://erp.example.com/api/")
        assert config.upstream_base_url == "https://erp.example.com/api"

    def test_non_http_url_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            GatewayConfig(upstream_base_url="ftp://erp.example.com")
        assert "http(s)" in str(exc_info.value)

    @pytest.mark.parametrize("attempts", [0, 11, -1])
    def test_max_attempts_out_of_range(self, attempts: int) -> None:
        with pytest.raises(ValidationError):
            GatewayConfig(max_attempts=attempts)

    def test_max_attempts_bounds_accepted(self) -> None:
        assert GatewayConfig(max_attempts=1).max_attempts == 1
        assert GatewayConfig(max_attempts=10).max_attempts == 10

    def test_negative_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GatewayConfig(dispatch_interval_seconds=-0.1)

    def test_zero_interval_accepted(self) -> None:
        assert GatewayConfig(dispatch_interval_seconds=0).dispatch_interval_seconds == 0

    @pytest.mark.parametrize("ttl", [0, 604801])
    def test_ttl_out_of_range(self, ttl: int) -> None:
        with pytest.raises(ValidationError):
            GatewayConfig(dedup_ttl_seconds=ttl)

    @pytest.mark.parametrize("timeout", [0, 301])
    def test_request_timeout_out_of_range(self, timeout: float) -> None:
        with pytest.raises(ValidationError):
            GatewayConfig(request_timeout_seconds=timeout)

    def test_credential_header_normalized(self) -> None:
        assert GatewayConfig(credential_header=" X-Api-Token ").credential_header == "x-api-token"

    def test_empty_credential_header_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GatewayConfig(credential_header="  ")

    def test_log_level_uppercased(self) -> None:
        assert GatewayConfig(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            GatewayConfig(log_level="verbose")
        assert "Invalid log level" in str(exc_info.value)

    def test_unknown_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GatewayConfig(credential_scheme="Basic")


class TestCredentialValue:
    def test_raw_token_by_default(self) -> None:
        assert GatewayConfig(upstream_token="abc").credential_value() == "abc"

    def test_bearer_scheme(self) -> None:
        config = GatewayConfig(upstream_token="abc", credential_scheme="Bearer")
        assert config.credential_value() == "Bearer abc"


class TestImmutability:
    def test_config_is_frozen(self) -> None:
        config = GatewayConfig()
        with pytest.raises(ValidationError):
            config.max_attempts = 5  # type: ignore[misc]


class TestFactories:
    def test_from_dict(self) -> None:
        config = GatewayConfig.from_dict({"max_attempts": 5, "dedup_ttl_seconds": 3600})
        assert config.max_attempts == 5
        assert config.dedup_ttl_seconds == 3600

    def test_from_dict_invalid(self) -> None:
        with pytest.raises(ValidationError):
            GatewayConfig.from_dict({"max_attempts": 0})

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ERP_GATEWAY_UPSTREAM_TOKEN", "env-token")
        monkeypatch.setenv("ERP_GATEWAY_DISPATCH_INTERVAL_SECONDS", "2.5")
        monkeypatch.setenv("ERP_GATEWAY_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("ERP_GATEWAY_LOG_JSON", "false")
        monkeypatch.setenv("ERP_GATEWAY_API_KEY", "inbound-key")

        config = GatewayConfig.from_env()

        assert config.upstream_token.get_secret_value() == "env-token"
        assert config.dispatch_interval_seconds == 2.5
        assert config.max_attempts == 4
        assert config.log_json is False
        assert isinstance(config.api_key, SecretStr)
        assert config.api_key.get_secret_value() == "inbound-key"

    def test_from_env_custom_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DUX_MAX_ATTEMPTS", "2")
        assert GatewayConfig.from_env(prefix="DUX_").max_attempts == 2

    @pytest.mark.parametrize("raw", ["1", "true", "YES", "on"])
    def test_from_env_truthy_bools(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("ERP_GATEWAY_LOG_JSON", raw)
        assert GatewayConfig.from_env().log_json is True

    def test_from_env_missing_keeps_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ERP_GATEWAY_MAX_ATTEMPTS", raising=False)
        assert GatewayConfig.from_env().max_attempts == 3
