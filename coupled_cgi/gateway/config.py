"""
Gateway configuration definition.

Loads configuration from environment variables and provides a Pydantic model.
Uses pydantic-settings for type safety and defaults.
"""

import sys
from pydantic import Field

from coupled_cgi import __version__
from coupled_cgi.common.core.config import BaseAppConfig


class GatewaySettings(BaseAppConfig):
    """
    Service-wide settings for the CGI gateway.

    Per-route settings (command, static environment, stderr policy) live in
    the CGI routes file, see ``models.gateway_config.GatewayConfig``.
    """

    # Server settings
    UVICORN_WORKERS: int = Field(default=1, description="Number of worker processes")
    UVICORN_BIND_ADDR: str = Field(default="0.0.0.0:8000", description="Listen address")

    # Path settings
    CGI_ROUTES_CONFIG_PATH: str = Field(
        default="/app/config/cgi_routes.yml", description="CGI route definition file path"
    )

    # CGI environment
    SERVER_SOFTWARE: str = Field(
        default=f"CoupledCGI/{__version__}", description="SERVER_SOFTWARE passed to programs"
    )
    REMOTE_HOST_LOOKUP: bool = Field(
        default=True, description="Resolve REMOTE_HOST with a reverse DNS lookup"
    )
    REMOTE_HOST_LOOKUP_TIMEOUT: float = Field(
        default=1.0, description="Reverse DNS lookup timeout (seconds)"
    )

    # Streaming
    READ_CHUNK_SIZE: int = Field(default=65536, description="Max bytes per read from the child")
    RESPONSE_BUFFER_CHUNKS: int = Field(
        default=16, description="Chunks buffered between the child and a slow client"
    )

    # Child process lifecycle
    TERMINATE_GRACE_PERIOD: float = Field(
        default=5.0, description="Wait after SIGTERM before SIGKILL (seconds)"
    )
    CGI_RUN_TIMEOUT: float = Field(
        default=0.0, description="Max run time of a CGI program, 0 disables (seconds)"
    )

    # FastAPI settings
    root_path: str = Field(default="", description="API root path (for proxy)")


# Load config as a singleton.
# pydantic-settings reads environment variables during instantiation.
try:
    config = GatewaySettings()
except Exception as e:
    sys.stderr.write(f"Failed to load configuration: {e}\n")
    raise
