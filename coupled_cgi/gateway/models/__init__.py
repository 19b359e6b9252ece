"""
Data model definitions package.

Aggregates Pydantic models for use in other modules.
"""

from .context import RequestContext
from .gateway_config import Command, GatewayConfig, StderrPolicy
from .target import CgiTarget

__all__ = [
    "CgiTarget",
    "Command",
    "GatewayConfig",
    "RequestContext",
    "StderrPolicy",
]
