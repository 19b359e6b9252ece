import asyncio
import os
import sys
import textwrap

import httpx
import pytest
import pytest_asyncio

# Config is initialized at import time, so set environment variables at the top level.
os.environ.setdefault("LOG_CONFIG_PATH", "/nonexistent/gateway_log.yaml")
os.environ.setdefault("CGI_ROUTES_CONFIG_PATH", "/nonexistent/cgi_routes.yml")
os.environ.setdefault("DISABLE_VICTORIALOGS", "true")
os.environ["REMOTE_HOST_LOOKUP"] = "false"

from coupled_cgi.gateway.config import GatewaySettings  # noqa: E402
from coupled_cgi.gateway.main import create_app  # noqa: E402
from coupled_cgi.gateway.models.context import RequestContext  # noqa: E402
from coupled_cgi.gateway.services.response_channel import ResponseChannel  # noqa: E402
from coupled_cgi.gateway.services.route_registry import RouteRegistry  # noqa: E402


class RecordingChannel(ResponseChannel):
    """ResponseChannel that records every call made by the coordinator."""

    def __init__(self):
        self.headers = {}
        self.header_calls = []
        self.writes = []
        self.finalize_calls = []
        self.live = True
        self.on_write = None
        self._disconnected = asyncio.Event()

    @property
    def body(self) -> bytes:
        return b"".join(self.writes)

    def set_header(self, name, value):
        self.header_calls.append((name, value))
        self.headers[name] = value

    async def write(self, data):
        if not self.is_live():
            return
        self.writes.append(data)
        if self.on_write is not None:
            self.on_write(self)

    def is_live(self):
        return self.live and not self.finalize_calls

    async def wait_disconnected(self):
        await self._disconnected.wait()

    def disconnect(self):
        self.live = False
        self._disconnected.set()

    async def finish(self):
        self.finalize_calls.append(("finish",))

    async def fail(self, status_code, message):
        self.finalize_calls.append(("fail", status_code, message))

    def abort(self):
        self.finalize_calls.append(("abort",))


@pytest.fixture
def recording_channel():
    return RecordingChannel()


@pytest.fixture
def settings():
    return GatewaySettings(
        REMOTE_HOST_LOOKUP=False,
        TERMINATE_GRACE_PERIOD=2.0,
        READ_CHUNK_SIZE=4096,
    )


@pytest.fixture
def request_context():
    return RequestContext(
        method="GET",
        host="example.com",
        path="/cgi/test",
        script_name="/cgi",
        path_info="test",
        remote_addr="127.0.0.1",
        remote_port=40000,
        local_addr="127.0.0.1",
        local_port=8000,
    )


@pytest.fixture
def cgi_script(tmp_path):
    """
    Factory writing a Python CGI program; returns the ``cmd`` list to run it.
    """
    counter = {"n": 0}

    def make(source: str):
        counter["n"] += 1
        script = tmp_path / f"script_{counter['n']}.py"
        script.write_text("import os, sys, time, json\n" + textwrap.dedent(source))
        return [sys.executable, str(script)]

    return make


@pytest.fixture
def registry(tmp_path):
    return RouteRegistry(str(tmp_path / "cgi_routes.yml"))


@pytest.fixture
def main_app(settings, registry):
    return create_app(settings, registry)


@pytest_asyncio.fixture
async def async_client(main_app):
    transport = httpx.ASGITransport(app=main_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    await main_app.state.processor.shutdown()
