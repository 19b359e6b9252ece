"""
CGI process lifecycle coordinator.

One coordinator per request. It spawns the program, streams its stdout
through the header splitter into the response channel, logs its stderr, and
finalizes the response exactly once:

    SPAWNING --> STREAMING --> FINALIZED
       |                           ^
       +------ spawn failure ------+

FINALIZED is reached by normal completion (program exited, stdout drained),
by abort (client disconnected) or by failure (spawn error, run timeout).
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Dict, Optional, Set

from coupled_cgi.gateway.config import GatewaySettings
from coupled_cgi.gateway.core.exceptions import SpawnError
from coupled_cgi.gateway.core.header_splitter import HeaderStreamSplitter, SplitResult
from coupled_cgi.gateway.core.stderr_collector import StderrCollector
from coupled_cgi.gateway.models.context import RequestContext
from coupled_cgi.gateway.models.gateway_config import GatewayConfig
from coupled_cgi.gateway.services.process import ChildProcessHandle, ProcessSpawner
from coupled_cgi.gateway.services.response_channel import ResponseChannel

logger = logging.getLogger("gateway.coordinator")


class CoordinatorState(str, Enum):
    SPAWNING = "spawning"
    STREAMING = "streaming"
    FINALIZED = "finalized"


class Outcome(str, Enum):
    FINISHED = "finished"
    ABORTED = "aborted"
    SPAWN_ERROR = "spawn_error"
    TIMED_OUT = "timed_out"


class ProcessLifecycleCoordinator:
    def __init__(
        self,
        gateway_config: GatewayConfig,
        context: RequestContext,
        channel: ResponseChannel,
        spawner: ProcessSpawner,
        settings: GatewaySettings,
    ):
        self.gateway_config = gateway_config
        self.context = context
        self.channel = channel
        self.spawner = spawner
        self.settings = settings

        self.state = CoordinatorState.SPAWNING
        self.outcome: Optional[Outcome] = None
        self.child: Optional[ChildProcessHandle] = None
        self.splitter: Optional[HeaderStreamSplitter] = None

    @property
    def log_prefix(self) -> str:
        if self.child is None:
            return str(self.gateway_config.command)
        return f"{self.gateway_config.command} [{self.child.pid}]"

    async def run(self, environment: Dict[str, str], body: bytes = b"") -> Optional[Outcome]:
        """
        Drive one CGI exchange to completion.

        Args:
            environment: complete environment of the program
            body: request body, written to the program's stdin

        Returns:
            How the exchange was finalized
        """
        try:
            self.child = await self.spawner.spawn(self.gateway_config, environment)
        except SpawnError as e:
            logger.error(
                str(e),
                extra={"cgi_command": str(self.gateway_config.command), "path": self.context.path},
            )
            await self._finalize(Outcome.SPAWN_ERROR)
            return self.outcome

        self.state = CoordinatorState.STREAMING
        self.splitter = HeaderStreamSplitter(self.log_prefix)
        try:
            await self._stream(body)
        finally:
            if self.state is not CoordinatorState.FINALIZED:
                # Cancelled or crashed mid-stream.
                self.child.terminate()
                await self._finalize(Outcome.ABORTED)
            returncode = await self.child.release(self.settings.TERMINATE_GRACE_PERIOD)
            logger.info(
                f"{self.log_prefix}: exited with status {returncode} ({self.outcome.value})",
                extra={"cgi_returncode": returncode, "cgi_outcome": self.outcome.value},
            )
        return self.outcome

    async def _stream(self, body: bytes) -> None:
        child = self.child
        deadline = None
        if self.settings.CGI_RUN_TIMEOUT > 0:
            deadline = time.monotonic() + self.settings.CGI_RUN_TIMEOUT

        stdout_task = asyncio.create_task(self._pump_stdout())
        disconnect_task = asyncio.create_task(self.channel.wait_disconnected())
        tasks: Set[asyncio.Task] = {
            asyncio.create_task(self._feed_stdin(body)),
            stdout_task,
            disconnect_task,
        }
        stderr_task = None
        if child.stderr is not None:
            stderr_task = asyncio.create_task(self._pump_stderr())
            tasks.add(stderr_task)

        try:
            done, _ = await asyncio.wait(
                {stdout_task, disconnect_task},
                timeout=_remaining(deadline),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if stdout_task in done and stdout_task.result():
                exit_task = asyncio.create_task(child.wait())
                tasks.add(exit_task)
                done, _ = await asyncio.wait(
                    {exit_task, disconnect_task},
                    timeout=_remaining(deadline),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if exit_task in done:
                    await self._drain_stderr(stderr_task)
                    await self._on_exit()
                elif disconnect_task in done:
                    await self._abort()
                else:
                    await self._on_timeout()
            elif stdout_task in done or disconnect_task in done:
                await self._abort()
            else:
                await self._on_timeout()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _feed_stdin(self, body: bytes) -> None:
        stdin = self.child.stdin
        if stdin is None:
            return
        try:
            if body:
                stdin.write(body)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug(f"{self.log_prefix}: program did not read the whole request body")
        finally:
            stdin.close()

    async def _pump_stdout(self) -> bool:
        """
        Forward stdout until EOF.

        Returns False when the client went away, True when stdout was drained.
        """
        stdout = self.child.stdout
        while True:
            chunk = await stdout.read(self.settings.READ_CHUNK_SIZE)
            if not chunk:
                break
            if not self.channel.is_live():
                return False
            await self._apply(self.splitter.feed(chunk))
        await self._apply(self.splitter.close())
        return True

    async def _pump_stderr(self) -> None:
        collector = StderrCollector(str(self.gateway_config.command), self.child.pid)
        stderr = self.child.stderr
        try:
            while True:
                chunk = await stderr.read(self.settings.READ_CHUNK_SIZE)
                if not chunk:
                    break
                collector.feed(chunk)
        finally:
            collector.close()

    async def _drain_stderr(self, stderr_task: Optional[asyncio.Task]) -> None:
        # A grandchild may hold stderr open after the program exits.
        if stderr_task is None:
            return
        try:
            await asyncio.wait_for(
                asyncio.shield(stderr_task), timeout=self.settings.TERMINATE_GRACE_PERIOD
            )
        except asyncio.TimeoutError:
            logger.warning(f"{self.log_prefix}: stderr still open after exit, not waiting")

    async def _apply(self, result: SplitResult) -> None:
        for name, value in result.headers:
            self.channel.set_header(name, value)
        if result.body is not None:
            await self.channel.write(result.body)

    async def _on_exit(self) -> None:
        if self.channel.is_live():
            await self._finalize(Outcome.FINISHED)
        else:
            await self._abort()

    async def _abort(self) -> None:
        self.child.terminate()
        logger.error(f"{self.log_prefix}: Client disconnected while CGI running")
        await self._finalize(Outcome.ABORTED)

    async def _on_timeout(self) -> None:
        self.child.terminate()
        logger.error(
            f"{self.log_prefix}: CGI program exceeded {self.settings.CGI_RUN_TIMEOUT}s, terminated"
        )
        await self._finalize(Outcome.TIMED_OUT)

    async def _finalize(self, outcome: Outcome) -> None:
        if self.state is CoordinatorState.FINALIZED:
            logger.warning(f"{self.log_prefix}: already finalized ({self.outcome}), not {outcome}")
            return
        self.state = CoordinatorState.FINALIZED
        self.outcome = outcome

        if outcome is Outcome.FINISHED:
            await self.channel.finish()
        elif outcome is Outcome.ABORTED:
            self.channel.abort()
        elif outcome is Outcome.SPAWN_ERROR:
            await self.channel.fail(500, "Failed to start CGI program")
        else:
            await self.channel.fail(504, "CGI program timed out")


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())
