"""
CGI environment builder.

Turns a RequestContext and a route configuration into the complete process
environment of a CGI program (RFC 3875 section 4.1). Pure computation, no I/O.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

from coupled_cgi.gateway.models.context import RequestContext
from coupled_cgi.gateway.models.gateway_config import GatewayConfig

logger = logging.getLogger("gateway.environment")

DEFAULT_PATH = "/bin:/usr/bin"
GATEWAY_INTERFACE = "CGI/1.1"


def header_variables(headers: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """
    Map request headers to HTTP_* variables.

    "Accept-Language: en-GB" becomes HTTP_ACCEPT_LANGUAGE="en_GB". Repeated
    headers are joined with ", ".
    """
    variables: Dict[str, str] = {}
    for name, value in headers:
        key = "HTTP_" + name.upper().replace("-", "_")
        value = value.replace("-", "_")
        if key in variables:
            variables[key] = f"{variables[key]}, {value}"
        else:
            variables[key] = value
    return variables


def _text(value: Optional[object]) -> str:
    return "" if value is None else str(value)


def build_cgi_environment(
    context: RequestContext, gateway_config: GatewayConfig, server_software: str
) -> Dict[str, str]:
    """
    Build the environment for one CGI invocation.

    Later layers override earlier ones:
      1. PATH and SERVER_SOFTWARE defaults
      2. the route's static ``env``
      3. HTTP_* variables from the request headers
      4. the RFC 3875 request meta-variables

    The result replaces the child's environment entirely.
    """
    environment: Dict[str, str] = {
        "PATH": DEFAULT_PATH,
        "SERVER_SOFTWARE": server_software,
    }
    environment.update(gateway_config.env)
    environment.update(header_variables(context.headers))
    environment.update(
        {
            "CONTENT_LENGTH": str(context.body_length or 0),
            "CONTENT_TYPE": _text(context.content_type),
            "GATEWAY_INTERFACE": GATEWAY_INTERFACE,
            "PATH_INFO": "/" + context.path_info,
            "QUERY_STRING": context.query_string,
            "REMOTE_ADDR": context.remote_addr,
            "LOCAL_ADDR": context.local_addr,
            "REMOTE_HOST": context.remote_host or context.remote_addr,
            "REQUEST_METHOD": context.method,
            "SERVER_NAME": context.host,
            "SCRIPT_FILENAME": gateway_config.command.program,
            "SCRIPT_NAME": context.script_name,
            "SERVER_PORT": _text(context.local_port),
            "SERVER_PROTOCOL": f"HTTP/{context.protocol_version}",
            "REMOTE_PORT": _text(context.remote_port),
            "REQUEST_URI": context.request_uri,
        }
    )

    logger.debug(
        "Built CGI environment for %s (%d variables)",
        gateway_config.command,
        len(environment),
    )
    return environment
