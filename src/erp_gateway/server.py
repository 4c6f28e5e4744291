"""Process entry point: serve the gateway with uvicorn.

Configuration comes from ``ERP_GATEWAY_*`` environment variables (see
GatewayConfig.from_env). The listening address comes from
``ERP_GATEWAY_HOST`` (default 0.0.0.0) and ``PORT`` (default 3000).

Run with: erp-gateway
"""

import os

import uvicorn
from fastapi import FastAPI

from erp_gateway.adapters.http import create_app
from erp_gateway.config import GatewayConfig
from erp_gateway.core.gateway import build_gateway
from erp_gateway.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_app(config: GatewayConfig) -> FastAPI:
    """Wire a gateway from ``config`` and wrap it in the HTTP surface."""
    if config.api_key is None:
        logger.warning("config.api_key_missing", message="Inbound authentication is disabled")
    if not config.upstream_token.get_secret_value():
        logger.warning("config.upstream_token_missing", message="Upstream calls will be rejected")
    return create_app(build_gateway(config), config)


def main() -> None:
    config = GatewayConfig.from_env()
    configure_logging(level=config.log_level, json_output=config.log_json)

    host = os.environ.get("ERP_GATEWAY_HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "3000"))
    logger.info("server.starting", host=host, port=port, upstream=config.upstream_base_url)

    uvicorn.run(build_app(config), host=host, port=port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
