"""
CGI route registry.

Loads the CGI routes file and resolves request paths to routes.

File format:

    defaults:
      env:
        GIT_PROJECT_ROOT: /var/lib/git
    routes:
      - path: /gitweb
        cmd: /usr/share/gitweb/gitweb.cgi
        path_ext: true

``defaults`` are merged under every route; ``env`` mappings are merged key by
key, other options are replaced. ``${VAR}`` references are substituted from
the gateway's environment when the file is read.
"""

import logging
import os
import string
from typing import Any, Dict, List, Optional

import yaml

from coupled_cgi.gateway.config import config
from coupled_cgi.gateway.core.exceptions import RouteConfigError
from coupled_cgi.gateway.models.gateway_config import GatewayConfig
from coupled_cgi.gateway.models.target import CgiTarget

logger = logging.getLogger("gateway.route_registry")


def merge_options(*layers: Dict[str, Any]) -> Dict[str, Any]:
    """Merge option layers, later layers winning; ``env`` is merged per key."""
    merged: Dict[str, Any] = {}
    env: Dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if key == "env":
                env.update(value or {})
            else:
                merged[key] = value
    if env:
        merged["env"] = env
    return merged


def match_path_info(route: GatewayConfig, request_path: str) -> Optional[str]:
    """
    Extra path of ``request_path`` under ``route``.

    Returns "" for the route path itself (with or without a trailing slash),
    the remainder after "<route path>/" when the route captures extra path,
    and None when the route does not apply.
    """
    prefix = route.path
    if prefix == "/":
        rest = request_path[1:] if request_path.startswith("/") else None
    elif request_path == prefix:
        return ""
    elif request_path.startswith(prefix + "/"):
        rest = request_path[len(prefix) + 1 :]
    else:
        return None

    if rest is None:
        return None
    if rest and not route.path_ext:
        return None
    return rest


class RouteRegistry:
    def __init__(self, config_path: Optional[str] = None, defaults: Optional[Dict[str, Any]] = None):
        """
        Args:
            config_path: CGI routes file (defaults to CGI_ROUTES_CONFIG_PATH)
            defaults: options merged under every route, below the file's own defaults
        """
        self.config_path = config_path or config.CGI_ROUTES_CONFIG_PATH
        self.defaults: Dict[str, Any] = dict(defaults or {})
        self._file_routes: Dict[str, GatewayConfig] = {}
        self._registered_routes: Dict[str, GatewayConfig] = {}

    @property
    def routes(self) -> List[GatewayConfig]:
        # Routes registered in code take precedence over the file.
        return list({**self._file_routes, **self._registered_routes}.values())

    def load_routes_config(self) -> List[GatewayConfig]:
        """
        Load the routes file, replacing routes previously loaded from it.

        A missing file clears the file routes; an unparsable file keeps the
        current ones. Invalid entries are logged and skipped.
        """
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                template = string.Template(f.read())
                content = template.safe_substitute(os.environ)
                cfg = yaml.safe_load(content) or {}
        except FileNotFoundError:
            logger.warning(f"CGI routes config not found at {self.config_path}")
            self._file_routes = {}
            return []
        except yaml.YAMLError as e:
            logger.error(f"Error parsing CGI routes config: {e}")
            return list(self._file_routes.values())

        file_defaults = cfg.get("defaults") or {}
        routes: Dict[str, GatewayConfig] = {}
        for entry in cfg.get("routes") or []:
            if not isinstance(entry, dict):
                logger.error(f"Skipping CGI route: expected a mapping, got {entry!r}")
                continue
            try:
                route = GatewayConfig.from_options(
                    **merge_options(self.defaults, file_defaults, entry)
                )
            except RouteConfigError as e:
                logger.error(f"Skipping CGI route: {e}")
                continue
            if route.path in routes:
                logger.warning(f"Duplicate CGI route {route.path}, last definition wins")
            routes[route.path] = route

        self._file_routes = routes
        logger.info(f"Loaded {len(routes)} CGI routes from {self.config_path}")
        return list(routes.values())

    def register(self, **options: Any) -> GatewayConfig:
        """
        Register a route from options, on top of the registry defaults.

        Raises:
            RouteConfigError: if the options do not describe a valid route
        """
        route = GatewayConfig.from_options(**merge_options(self.defaults, options))
        self._registered_routes[route.path] = route
        logger.info(f"Registered CGI route {route.path} -> {route.command}")
        return route

    def match(self, request_path: str) -> Optional[CgiTarget]:
        """
        Resolve the route for a request path; the longest route path wins.
        """
        best: Optional[CgiTarget] = None
        for route in self.routes:
            path_info = match_path_info(route, request_path)
            if path_info is None:
                continue
            if best is None or len(route.path) > len(best.route.path):
                best = CgiTarget(route=route, path_info=path_info)
        return best
