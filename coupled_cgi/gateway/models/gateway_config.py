"""
CGI route configuration models.

A GatewayConfig is built once per route at registration time and is
immutable afterwards. ``from_options`` accepts the route option names used in
the routes file (path, cmd, env, quash_stderr, merge_stderr, pre_exec_cb,
path_ext).
"""

import importlib
import shlex
from enum import Enum
from typing import Any, Callable, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from coupled_cgi.gateway.core.exceptions import RouteConfigError

PreExecHook = Callable[[], Any]

ROUTE_OPTIONS = frozenset(
    {"path", "cmd", "env", "quash_stderr", "merge_stderr", "pre_exec_cb", "path_ext"}
)


class StderrPolicy(str, Enum):
    """What happens to the CGI program's standard error."""

    FORWARD = "forward"  # log each line at error level
    DROP = "drop"
    MERGE = "merge"  # send it down the stdout path


class Command(BaseModel):
    """Program path plus argument list."""

    model_config = ConfigDict(frozen=True)

    program: str = Field(min_length=1)
    args: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]

    def __str__(self) -> str:
        # "/usr/bin/python3 app.py" rather than just the interpreter.
        return shlex.join(self.argv)


class GatewayConfig(BaseModel):
    """
    Immutable configuration of one CGI route.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    path: str
    command: Command
    env: Dict[str, str] = Field(default_factory=dict)
    stderr_policy: StderrPolicy = StderrPolicy.FORWARD
    pre_exec_hooks: Tuple[PreExecHook, ...] = ()
    path_ext: bool = False

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        if value != "/":
            value = value.rstrip("/") or "/"
        return value

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        # YAML turns ports and flags into ints/bools; the environment is text.
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @classmethod
    def from_options(cls, **options: Any) -> "GatewayConfig":
        """
        Build a route from option names.

        Args:
            path: URL path prefix that activates the program
            cmd: program path, or list of program path followed by arguments
            env: extra static environment entries
            quash_stderr: drop the program's stderr
            merge_stderr: merge the program's stderr into the body stream
            pre_exec_cb: hook or list of hooks run in the child before exec;
                each a callable or a "module:attribute" reference
            path_ext: capture trailing path segments as PATH_INFO

        Raises:
            RouteConfigError: on missing, unknown or conflicting options
        """
        path = options.get("path")
        if not path:
            raise RouteConfigError("<unset>", "'path' is required")

        unknown = set(options) - ROUTE_OPTIONS
        if unknown:
            raise RouteConfigError(path, f"unknown options: {', '.join(sorted(unknown))}")

        quash = bool(options.get("quash_stderr"))
        merge = bool(options.get("merge_stderr"))
        if quash and merge:
            raise RouteConfigError(path, "quash_stderr and merge_stderr are mutually exclusive")
        if quash:
            policy = StderrPolicy.DROP
        elif merge:
            policy = StderrPolicy.MERGE
        else:
            policy = StderrPolicy.FORWARD

        hooks = options.get("pre_exec_cb")
        if hooks is None:
            hooks = []
        elif not isinstance(hooks, (list, tuple)):
            hooks = [hooks]

        try:
            return cls(
                path=path,
                command=_parse_command(path, options.get("cmd")),
                env=options.get("env") or {},
                stderr_policy=policy,
                pre_exec_hooks=tuple(resolve_hook(path, hook) for hook in hooks),
                path_ext=bool(options.get("path_ext")),
            )
        except ValidationError as e:
            raise RouteConfigError(path, str(e)) from e


def _parse_command(path: str, cmd: Any) -> Command:
    if isinstance(cmd, str) and cmd:
        return Command(program=cmd)
    if isinstance(cmd, (list, tuple)) and cmd and all(isinstance(c, str) for c in cmd):
        return Command(program=cmd[0], args=tuple(cmd[1:]))
    raise RouteConfigError(path, "'cmd' must be a program path or a non-empty list of strings")


def resolve_hook(path: str, hook: Any) -> PreExecHook:
    """
    Resolve a pre-exec hook reference.

    Accepts a callable, or a "package.module:attribute" string that is
    imported once, here.
    """
    if callable(hook):
        return hook
    if not isinstance(hook, str) or ":" not in hook:
        raise RouteConfigError(path, f"pre_exec_cb {hook!r} is not a callable or 'module:attr'")

    module_name, _, attr_path = hook.partition(":")
    try:
        target: Any = importlib.import_module(module_name)
        for attr in attr_path.split("."):
            target = getattr(target, attr)
    except (ImportError, AttributeError) as e:
        raise RouteConfigError(path, f"cannot resolve pre_exec_cb {hook!r}: {e}") from e

    if not callable(target):
        raise RouteConfigError(path, f"pre_exec_cb {hook!r} is not callable")
    return target
