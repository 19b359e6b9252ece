"""
CGI child process spawning.

ProcessSpawner starts one program per request with an explicit environment;
ChildProcessHandle owns the resulting process until it is released.
"""

import asyncio
import logging
import subprocess
from typing import Callable, Dict, Optional, Sequence

from coupled_cgi.gateway.core.exceptions import SpawnError
from coupled_cgi.gateway.models.gateway_config import (
    Command,
    GatewayConfig,
    PreExecHook,
    StderrPolicy,
)

logger = logging.getLogger("gateway.process")

_STDERR_TARGETS = {
    StderrPolicy.FORWARD: asyncio.subprocess.PIPE,
    StderrPolicy.DROP: asyncio.subprocess.DEVNULL,
    StderrPolicy.MERGE: asyncio.subprocess.STDOUT,
}


class ChildProcessHandle:
    """
    A running CGI program and its pipes.

    ``stderr`` is None unless the route forwards stderr to the log.
    """

    def __init__(self, process: asyncio.subprocess.Process, command: Command):
        self.process = process
        self.command = command
        self._released = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdin(self) -> Optional[asyncio.StreamWriter]:
        return self.process.stdin

    @property
    def stdout(self) -> Optional[asyncio.StreamReader]:
        return self.process.stdout

    @property
    def stderr(self) -> Optional[asyncio.StreamReader]:
        return self.process.stderr

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    @property
    def released(self) -> bool:
        return self._released

    def terminate(self) -> None:
        """Send SIGTERM if the program is still running."""
        if not self.running:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            # Exited but not reaped yet.
            pass

    async def wait(self) -> int:
        return await self.process.wait()

    async def release(self, grace_period: float) -> Optional[int]:
        """
        Close stdin, stop the program if needed and reap it.

        SIGTERM first, SIGKILL after ``grace_period`` seconds. Only the first
        call does anything.
        """
        if self._released:
            return self.process.returncode
        self._released = True

        if self.stdin is not None and not self.stdin.is_closing():
            self.stdin.close()

        if self.running:
            self.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    f"{self.command} [{self.pid}]: still running {grace_period}s after SIGTERM, killing"
                )
                try:
                    self.process.kill()
                except ProcessLookupError:
                    pass
                await self.process.wait()
        else:
            await self.process.wait()

        return self.process.returncode


def _chain_hooks(hooks: Sequence[PreExecHook]) -> Optional[Callable[[], None]]:
    if not hooks:
        return None

    def run_hooks() -> None:
        for hook in hooks:
            hook()

    return run_hooks


class ProcessSpawner:
    """
    Starts CGI programs.

    The environment passed in is the child's whole environment; the gateway
    process environment is neither read nor modified.
    """

    async def spawn(
        self, gateway_config: GatewayConfig, environment: Dict[str, str]
    ) -> ChildProcessHandle:
        command = gateway_config.command
        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=_STDERR_TARGETS[gateway_config.stderr_policy],
                env=environment,
                preexec_fn=_chain_hooks(gateway_config.pre_exec_hooks),
            )
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            # ValueError: NUL byte in argv or environment (e.g. a %00 in PATH_INFO).
            raise SpawnError(str(command), e) from e

        logger.info(
            f"{command} [{process.pid}]: started",
            extra={"cgi_command": str(command), "cgi_pid": process.pid},
        )
        return ChildProcessHandle(process, command)
