"""
Dependency Injection for Gateway API.

Manage request handler dependencies using FastAPI Depends.
"""

from typing import Annotated

from fastapi import Depends, Request

from coupled_cgi.gateway.core.exceptions import RouteNotFoundError
from coupled_cgi.gateway.models import CgiTarget
from coupled_cgi.gateway.services.processor import GatewayRequestProcessor
from coupled_cgi.gateway.services.route_registry import RouteRegistry


# ==========================================
# 1. Service Accessors
# ==========================================


def get_route_registry(request: Request) -> RouteRegistry:
    return request.app.state.route_registry


def get_processor(request: Request) -> GatewayRequestProcessor:
    return request.app.state.processor


# Service Dependency Type Aliases
RouteRegistryDep = Annotated[RouteRegistry, Depends(get_route_registry)]
ProcessorDep = Annotated[GatewayRequestProcessor, Depends(get_processor)]


# ==========================================
# 2. Logic Dependencies (Resolution)
# ==========================================


async def resolve_cgi_target(request: Request, registry: RouteRegistryDep) -> CgiTarget:
    """
    Resolve the CGI route from the request path.

    Args:
        request: FastAPI Request object
        registry: RouteRegistry service (DI)

    Returns:
        CgiTarget: matched route and extra path

    Raises:
        RouteNotFoundError: when no route matches (rendered as 404)
    """
    target = registry.match(request.url.path)
    if target is None:
        raise RouteNotFoundError(request.url.path)
    return target


# Logic Dependency Type Aliases
CgiTargetDep = Annotated[CgiTarget, Depends(resolve_cgi_target)]
