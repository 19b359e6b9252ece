"""
CgiTarget model.

Data class representing the result of routing resolution.
"""

from pydantic import BaseModel

from coupled_cgi.gateway.models.gateway_config import GatewayConfig


class CgiTarget(BaseModel):
    """
    CGI route resolved for a request path.
    """

    route: GatewayConfig
    path_info: str = ""
