"""
Response channels.

A ResponseChannel is what the lifecycle coordinator writes a CGI program's
output to. StreamingResponseChannel buffers it for ChannelResponse, the ASGI
response that sends it to the client and reports disconnects back.
"""

import asyncio
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Optional, Tuple

from starlette.background import BackgroundTask
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

logger = logging.getLogger("gateway.response_channel")

# End-of-body marker in the chunk queue.
_DONE = None


class ResponseChannel(ABC):
    """
    The host HTTP response, as seen by the coordinator.

    Headers may be set until the first body write; the last value set for a
    name wins. Exactly one of finish(), fail() or abort() takes effect.
    """

    @abstractmethod
    def set_header(self, name: str, value: str) -> None: ...

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Append body bytes. An empty write commits the headers."""

    @abstractmethod
    def is_live(self) -> bool:
        """False once the client has gone away or the response is finalized."""

    @abstractmethod
    async def wait_disconnected(self) -> None:
        """Return when the client disconnects."""

    @abstractmethod
    async def finish(self) -> None: ...

    @abstractmethod
    async def fail(self, status_code: int, message: str) -> None: ...

    @abstractmethod
    def abort(self) -> None: ...


def parse_status(value: str) -> Optional[int]:
    """Status code from a CGI Status header ("404 Not Found" -> 404)."""
    code = value.strip().split(" ", 1)[0]
    if len(code) == 3 and code.isdigit() and 100 <= int(code) <= 599:
        return int(code)
    return None


class StreamingResponseChannel(ResponseChannel):
    """
    Queue-backed channel drained by ChannelResponse.

    The queue is bounded, so a slow client makes write() wait.
    """

    def __init__(self, max_buffered_chunks: int = 16):
        self.status_code = 200
        self.outcome: Optional[str] = None
        self._headers: Dict[str, Tuple[str, str]] = {}
        # fail() queues a body and the end marker back to back.
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(2, max_buffered_chunks))
        self._committed = asyncio.Event()
        self._disconnected = asyncio.Event()

    @property
    def headers(self) -> List[Tuple[str, str]]:
        return list(self._headers.values())

    @property
    def committed(self) -> bool:
        return self._committed.is_set()

    @property
    def disconnected(self) -> bool:
        return self._disconnected.is_set()

    @property
    def finalized(self) -> bool:
        return self.outcome is not None

    def set_header(self, name: str, value: str) -> None:
        if self.committed:
            logger.warning(f"Header {name} arrived after the body started, ignored")
            return
        if name.lower() == "status":
            status_code = parse_status(value)
            if status_code is None:
                logger.warning(f"Invalid CGI Status header: {value!r}")
            else:
                self.status_code = status_code
            return
        self._headers[name.lower()] = (name, value)

    async def write(self, data: bytes) -> None:
        if not self.is_live():
            return
        self._committed.set()
        if data:
            await self._queue.put(data)

    def is_live(self) -> bool:
        return not self.finalized and not self.disconnected

    async def wait_disconnected(self) -> None:
        await self._disconnected.wait()

    async def wait_committed(self) -> None:
        await self._committed.wait()

    async def finish(self) -> None:
        if not self._finalize("finished"):
            return
        self._committed.set()
        await self._queue.put(_DONE)

    async def fail(self, status_code: int, message: str) -> None:
        if not self._finalize("failed"):
            return
        if self.committed:
            # Status line already sent; all that is left is to end the body.
            logger.error(f"Response failed after the body started: {message}")
        else:
            self.status_code = status_code
            self._headers = {"content-type": ("Content-Type", "application/json")}
            self._committed.set()
            await self._queue.put(json.dumps({"message": message}).encode("utf-8"))
        await self._queue.put(_DONE)

    def abort(self) -> None:
        if not self._finalize("aborted"):
            return
        self._committed.set()
        self._end_stream()

    def disconnect(self) -> None:
        """Record that the client went away; pending body chunks are dropped."""
        if self.disconnected:
            return
        self._disconnected.set()
        self._committed.set()
        self._end_stream()

    async def iter_body(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is _DONE:
                return
            yield chunk

    def _finalize(self, outcome: str) -> bool:
        if self.finalized:
            logger.warning(f"Response already {self.outcome}, ignoring {outcome}")
            return False
        self.outcome = outcome
        return True

    def _end_stream(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_DONE)


class ChannelResponse(Response):
    """
    Sends a StreamingResponseChannel to the client.

    Modelled on Starlette's StreamingResponse; a client disconnect, detected
    from ``http.disconnect``, a failed send or cancellation, is passed to the
    channel so the coordinator can stop the program.
    """

    def __init__(
        self, channel: StreamingResponseChannel, background: Optional[BackgroundTask] = None
    ):
        self.channel = channel
        self.status_code = channel.status_code
        self.background = background
        self.init_headers(dict(channel.headers))

    async def _listen_for_disconnect(self, receive: Receive) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                self.channel.disconnect()
                return

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        send_body = scope.get("method") != "HEAD"
        listener = asyncio.create_task(self._listen_for_disconnect(receive))
        completed = False
        try:
            await send(
                {
                    "type": "http.response.start",
                    "status": self.status_code,
                    "headers": self.raw_headers,
                }
            )
            async for chunk in self.channel.iter_body():
                if send_body:
                    await send({"type": "http.response.body", "body": chunk, "more_body": True})
            await send({"type": "http.response.body", "body": b"", "more_body": False})
            completed = True
        except OSError as e:
            logger.info(f"Client connection lost while streaming CGI output: {e}")
        finally:
            listener.cancel()
            if not completed:
                self.channel.disconnect()

        if self.background is not None:
            await self.background()
