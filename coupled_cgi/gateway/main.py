"""
CoupledCGI Gateway - CGI/1.1 server

Runs the CGI program configured for the request path (see the CGI routes
file) once per request and streams its output back as the HTTP response.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request

from coupled_cgi import __version__

from coupled_cgi.gateway.api.deps import CgiTargetDep, ProcessorDep
from coupled_cgi.gateway.config import GatewaySettings, config
from coupled_cgi.gateway.core.logging_config import setup_logging
from coupled_cgi.gateway.exceptions import register_exception_handlers
from coupled_cgi.gateway.lifecycle import manage_lifespan
from coupled_cgi.gateway.middleware import request_id_middleware
from coupled_cgi.gateway.models.gateway_config import GatewayConfig
from coupled_cgi.gateway.services.process import ProcessSpawner
from coupled_cgi.gateway.services.processor import GatewayRequestProcessor
from coupled_cgi.gateway.services.route_registry import RouteRegistry

# Logger setup
setup_logging()
logger = logging.getLogger("gateway.main")

CGI_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ===========================================
# Endpoint definitions.
# ===========================================


async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


async def cgi_handler(request: Request, path: str, target: CgiTargetDep, processor: ProcessorDep):
    """
    Catch-all route: run the CGI program registered for the path.

    Route resolution is handled via DI; unmatched paths are answered with 404.
    """
    return await processor.process_request(request, target)


# ===========================================
# Application assembly.
# ===========================================


def create_app(
    settings: GatewaySettings = config, registry: Optional[RouteRegistry] = None
) -> FastAPI:
    app = FastAPI(
        title="CoupledCGI Gateway",
        version=__version__,
        lifespan=lambda app: manage_lifespan(app, settings),
        root_path=settings.root_path,
    )

    app.state.route_registry = registry or RouteRegistry(settings.CGI_ROUTES_CONFIG_PATH)
    app.state.processor = GatewayRequestProcessor(ProcessSpawner(), settings)

    app.middleware("http")(request_id_middleware)
    register_exception_handlers(app)

    app.add_api_route("/health", health_check, methods=["GET"])
    app.add_api_route("/{path:path}", cgi_handler, methods=CGI_METHODS)
    return app


def register_cgi(app: FastAPI, **options: Any) -> GatewayConfig:
    """
    Register a CGI route on an application created by create_app().

        register_cgi(
            app,
            path="/gitweb",
            cmd="/usr/share/gitweb/gitweb.cgi",
            env={"GIT_PROJECT_ROOT": "/var/lib/git"},
            path_ext=True,
        )
    """
    return app.state.route_registry.register(**options)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    host, _, port = config.UVICORN_BIND_ADDR.rpartition(":")
    uvicorn.run(
        "coupled_cgi.gateway.main:app",
        host=host or "0.0.0.0",
        port=int(port),
        workers=config.UVICORN_WORKERS,
    )
