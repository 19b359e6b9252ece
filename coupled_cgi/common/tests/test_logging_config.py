"""
Logging configuration tests.

CustomJsonFormatter output and VictoriaLogsHandler delivery.
"""

import json
import logging
import sys
import urllib.error
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest

from coupled_cgi.common.core import request_context
from coupled_cgi.common.core.logging_config import (
    CustomJsonFormatter,
    VictoriaLogsHandler,
)


def make_record(msg="Test message", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="gateway.coordinator",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    record.created = 1678886400.0  # 2023-03-15T13:20:00Z
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCustomJsonFormatter:
    def test_basic_fields(self):
        request_context.clear_request_id()

        data = json.loads(CustomJsonFormatter().format(make_record()))

        assert data["_time"] == "2023-03-15T13:20:00.000+00:00"
        assert data["level"] == "INFO"
        assert data["logger"] == "gateway.coordinator"
        assert data["message"] == "Test message"
        assert "request_id" not in data

    def test_request_id_from_context(self):
        request_context.set_request_id("ctx-id")
        try:
            data = json.loads(CustomJsonFormatter().format(make_record()))
        finally:
            request_context.clear_request_id()

        assert data["request_id"] == "ctx-id"

    def test_extra_fields_are_included(self):
        data = json.loads(
            CustomJsonFormatter().format(
                make_record(cgi_command="/srv/app.cgi", cgi_pid=4242, request_id="rec-id")
            )
        )

        assert data["cgi_command"] == "/srv/app.cgi"
        assert data["cgi_pid"] == 4242
        assert data["request_id"] == "rec-id"

    def test_exception_is_formatted(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        data = json.loads(CustomJsonFormatter().format(record))

        assert "ValueError: bad" in data["exception"]


class TestVictoriaLogsHandler:
    @pytest.fixture
    def handler(self):
        handler = VictoriaLogsHandler(
            url="http://localhost:9428/insert/jsonline",
            stream_fields={"container_name": "coupled-cgi-gateway"},
            timeout=0.1,
        )
        handler.setFormatter(CustomJsonFormatter())
        return handler

    def test_emit_sends_http_post(self, handler):
        """Success case: HTTP POST is sent."""
        with patch("urllib.request.urlopen") as mock_urlopen:
            mock_urlopen.return_value.__enter__.return_value = MagicMock()

            handler.emit(make_record())

            args, _ = mock_urlopen.call_args
            req = args[0]
            assert "_stream_fields=container_name" in req.full_url
            assert "container_name=coupled-cgi-gateway" in req.full_url
            data = json.loads(req.data.decode("utf-8"))
            assert data["message"] == "Test message"
            assert data["container_name"] == "coupled-cgi-gateway"

    def test_emit_fallback_to_stderr_on_failure(self, handler):
        """Error case: fall back to __stderr__ on network error."""
        mock_stderr = StringIO()

        with (
            patch("urllib.request.urlopen") as mock_urlopen,
            patch("sys.__stderr__", mock_stderr),
        ):
            mock_urlopen.side_effect = urllib.error.URLError("Connection refused")

            handler.emit(make_record())

        output = json.loads(mock_stderr.getvalue())
        assert output["fallback"] == "victorialogs_failed"
        assert output["original_log"]["message"] == "Test message"
