"""
Gateway Request Processor - Service Layer

Standardizes the flow: Request -> RequestContext -> CGI environment ->
coordinated child process -> streamed Response.
"""

import asyncio
import logging
from typing import Set

from starlette.requests import Request
from starlette.responses import Response

from coupled_cgi.gateway.config import GatewaySettings
from coupled_cgi.gateway.core.environment import build_cgi_environment
from coupled_cgi.gateway.core.utils import resolve_remote_host
from coupled_cgi.gateway.models.context import RequestContext
from coupled_cgi.gateway.models.target import CgiTarget
from coupled_cgi.gateway.services.coordinator import ProcessLifecycleCoordinator
from coupled_cgi.gateway.services.process import ProcessSpawner
from coupled_cgi.gateway.services.response_channel import ChannelResponse, StreamingResponseChannel

logger = logging.getLogger("gateway.processor")


class GatewayRequestProcessor:
    """
    Entry point for one CGI request.

    Coordinators run as background tasks so the response can start streaming
    while the program is still running.
    """

    def __init__(self, spawner: ProcessSpawner, settings: GatewaySettings):
        self.spawner = spawner
        self.settings = settings
        self._tasks: Set[asyncio.Task] = set()

    async def build_context(
        self, request: Request, target: CgiTarget, body: bytes
    ) -> RequestContext:
        client = request.client
        remote_addr = client.host if client else ""
        server = request.scope.get("server") or (None, None)

        remote_host = None
        if self.settings.REMOTE_HOST_LOOKUP and remote_addr:
            remote_host = await resolve_remote_host(
                remote_addr, self.settings.REMOTE_HOST_LOOKUP_TIMEOUT
            )

        route_path = target.route.path
        return RequestContext(
            method=request.method,
            scheme=request.url.scheme,
            host=request.url.hostname or "",
            path=request.url.path,
            query_string=request.url.query,
            headers=list(request.headers.items()),
            body_length=len(body),
            content_type=request.headers.get("content-type"),
            remote_addr=remote_addr,
            remote_port=client.port if client else None,
            local_addr=server[0] or "",
            local_port=server[1],
            remote_host=remote_host,
            protocol_version=request.scope.get("http_version", "1.1"),
            script_name="" if route_path == "/" else route_path,
            path_info=target.path_info,
        )

    async def process_request(self, request: Request, target: CgiTarget) -> Response:
        """
        Run the route's program for this request.

        Returns once the program's header block is complete (or the exchange
        ended before that); the body keeps streaming from the program.
        """
        body = await request.body()
        context = await self.build_context(request, target, body)
        environment = build_cgi_environment(
            context, target.route, self.settings.SERVER_SOFTWARE
        )

        logger.info(
            f"Invoking {target.route.command} for {context.method} {context.request_uri}",
            extra={"cgi_command": str(target.route.command), "path_info": context.path_info},
        )

        channel = StreamingResponseChannel(self.settings.RESPONSE_BUFFER_CHUNKS)
        coordinator = ProcessLifecycleCoordinator(
            target.route, context, channel, self.spawner, self.settings
        )
        task = asyncio.create_task(coordinator.run(environment, body))
        self._tasks.add(task)
        task.add_done_callback(self._on_coordinator_done)

        await self._wait_for_headers(request, channel, task)
        return ChannelResponse(channel)

    async def _wait_for_headers(
        self, request: Request, channel: StreamingResponseChannel, task: asyncio.Task
    ) -> None:
        committed = asyncio.create_task(channel.wait_committed())
        disconnected = asyncio.create_task(_wait_for_disconnect(request))
        try:
            done, _ = await asyncio.wait(
                {committed, disconnected, task}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnected in done:
                channel.disconnect()
            elif task in done and not channel.committed:
                # Coordinator died before committing anything.
                task.result()
        finally:
            committed.cancel()
            disconnected.cancel()

    def _on_coordinator_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("CGI coordinator failed", exc_info=exc)

    async def shutdown(self) -> None:
        """Cancel running exchanges; each coordinator stops and reaps its program."""
        tasks = list(self._tasks)
        if tasks:
            logger.info(f"Stopping {len(tasks)} running CGI program(s)")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def _wait_for_disconnect(request: Request) -> None:
    # The body has already been read, so the next message is the disconnect.
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return
