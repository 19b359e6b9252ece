"""
Where: coupled_cgi/gateway/lifecycle.py
What: Gateway startup/shutdown orchestration for shared resources.
Why: Keep main.py focused on app assembly while preserving lifecycle behavior.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from coupled_cgi.gateway.config import GatewaySettings

logger = logging.getLogger("gateway.main")


@asynccontextmanager
async def manage_lifespan(app: FastAPI, gateway_config: GatewaySettings) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    registry = app.state.route_registry
    processor = app.state.processor

    try:
        registry.load_routes_config()
        for route in registry.routes:
            logger.info(
                f"CGI route {route.path} -> {route.command} "
                f"(path_ext={route.path_ext}, stderr={route.stderr_policy.value})"
            )
        logger.info(
            f"Gateway initialized ({gateway_config.SERVER_SOFTWARE}, "
            f"{len(registry.routes)} CGI routes)."
        )
        yield
    finally:
        logger.info("Gateway shutting down, stopping running CGI programs.")
        await processor.shutdown()
