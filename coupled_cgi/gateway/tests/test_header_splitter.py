"""
Header splitter tests.

The splitter must give the same headers, body and warnings however the
program's output is cut into chunks.
"""

import logging

import pytest

from coupled_cgi.gateway.core.header_splitter import (
    MAX_HEADER_LINE,
    HeaderStreamSplitter,
    SplitterState,
)

LOGGER = "gateway.header_splitter"


def split(data: bytes, chunk_size: int = 0):
    """Feed ``data`` in chunks of ``chunk_size`` (0 = one chunk); return headers, body."""
    splitter = HeaderStreamSplitter("test.cgi [1]")
    headers = []
    body = []
    chunks = [data] if chunk_size == 0 else [
        data[i : i + chunk_size] for i in range(0, len(data), chunk_size)
    ]
    for chunk in chunks:
        result = splitter.feed(chunk)
        if body:
            # Headers are never reported once the body has started.
            assert result.headers == []
        headers.extend(result.headers)
        if result.body is not None:
            body.append(result.body)
    result = splitter.close()
    headers.extend(result.headers)
    if result.body is not None:
        body.append(result.body)
    return headers, b"".join(body), splitter


def warnings_from(caplog):
    return [r.getMessage() for r in caplog.records if r.name == LOGGER]


def test_single_chunk_headers_and_body(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)

    headers, body, splitter = split(b"Content-Type: text/plain\r\n\r\nHello")

    assert headers == [("Content-Type", "text/plain")]
    assert body == b"Hello"
    assert splitter.state is SplitterState.STREAMING_BODY
    assert warnings_from(caplog) == []


def test_blank_line_in_second_chunk():
    splitter = HeaderStreamSplitter()

    first = splitter.feed(b"Content-Type: text/plain\r\n")
    assert first.headers == [("Content-Type", "text/plain")]
    assert first.body is None
    assert not splitter.headers_complete

    second = splitter.feed(b"\r\nHello")
    assert second.headers == []
    assert second.body == b"Hello"
    assert splitter.headers_complete


def test_end_of_header_block_without_body_returns_empty_body():
    splitter = HeaderStreamSplitter()

    result = splitter.feed(b"Status: 204 No Content\n\n")

    assert result.headers == [("Status", "204 No Content")]
    assert result.body == b""


@pytest.mark.parametrize("chunk_size", [0, 1, 2, 3, 5, 7, 13, 64])
def test_chunking_does_not_change_result(chunk_size, caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)
    data = (
        b"Status: 200 OK\r\n"
        b"Content-Type: text/html; charset=utf-8\r\n"
        b"X-Empty:\r\n"
        b"Set-Cookie: a=b; Path=/\n"
        b"\r\n"
        b"<html>\r\nContent-Type: not-a-header\r\n\r\n</html>"
    )

    headers, body, _ = split(data, chunk_size)

    assert headers == [
        ("Status", "200 OK"),
        ("Content-Type", "text/html; charset=utf-8"),
        ("X-Empty", ""),
        ("Set-Cookie", "a=b; Path=/"),
    ]
    assert body == b"<html>\r\nContent-Type: not-a-header\r\n\r\n</html>"
    assert warnings_from(caplog) == []


def test_body_bytes_are_never_reparsed():
    splitter = HeaderStreamSplitter()
    splitter.feed(b"A: 1\n\n")

    result = splitter.feed(b"B: 2\n\n")

    assert result.headers == []
    assert result.body == b"B: 2\n\n"


def test_header_value_whitespace_is_trimmed():
    headers, body, _ = split(b"X-Thing:    spaced value  \r\n\r\n")

    assert headers == [("X-Thing", "spaced value")]
    assert body == b""


@pytest.mark.parametrize("chunk_size", [0, 1, 4])
def test_no_headers_forwards_everything_and_warns_once(chunk_size, caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)
    data = b"<!DOCTYPE html>\n<p>no headers here</p>\n"

    headers, body, _ = split(data, chunk_size)

    assert headers == []
    assert body == data
    assert warnings_from(caplog) == ["test.cgi [1]: no HTTP headers received"]


def test_empty_output_warns_no_headers(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)

    headers, body, _ = split(b"")

    assert headers == []
    assert body == b""
    assert warnings_from(caplog) == ["test.cgi [1]: no HTTP headers received"]


def test_header_shaped_output_without_newline_is_body_at_eof(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)

    headers, body, _ = split(b"justtext")

    assert headers == []
    assert body == b"justtext"
    assert warnings_from(caplog) == ["test.cgi [1]: no HTTP headers received"]


@pytest.mark.parametrize("chunk_size", [0, 1, 3])
def test_malformed_line_after_header_is_body_and_warns_once(chunk_size, caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)
    data = b"Content-Type: text/plain\r\nthis is not a header\r\nX-Later: 1\r\n\r\nrest"

    headers, body, _ = split(data, chunk_size)

    assert headers == [("Content-Type", "text/plain")]
    assert body == b"this is not a header\r\nX-Later: 1\r\n\r\nrest"
    assert warnings_from(caplog) == [
        "test.cgi [1]: malformed HTTP header or no empty line after"
    ]


def test_missing_blank_line_at_eof_warns_malformed(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)

    headers, body, _ = split(b"Content-Type: text/plain\r\nX-Partial: va")

    assert headers == [("Content-Type", "text/plain")]
    assert body == b"X-Partial: va"
    assert warnings_from(caplog) == [
        "test.cgi [1]: malformed HTTP header or no empty line after"
    ]


def test_headers_only_then_eof_is_silent(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)

    headers, body, _ = split(b"Location: /elsewhere\r\n")

    assert headers == [("Location", "/elsewhere")]
    assert body == b""
    assert warnings_from(caplog) == []


def test_line_that_cannot_become_a_header_starts_body_early():
    splitter = HeaderStreamSplitter()
    splitter.feed(b"Content-Type: text/html\n")

    result = splitter.feed(b"<a href")

    assert result.body == b"<a href"
    assert splitter.headers_complete


def test_partial_header_line_waits_for_more_data():
    splitter = HeaderStreamSplitter()

    assert splitter.feed(b"Content-Ty").body is None
    assert splitter.feed(b"pe: text/pl").body is None
    assert splitter.feed(b"ain\r").body is None

    result = splitter.feed(b"\n\r")
    assert result.headers == [("Content-Type", "text/plain")]
    assert result.body is None

    assert splitter.feed(b"\nok").body == b"ok"


def test_long_colon_line_without_newline_starts_body_before_eof(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)
    data = b'{"a":1,' + b'"x":' * 3000
    splitter = HeaderStreamSplitter("test.cgi [1]")

    body = []
    for i in range(0, len(data), 1024):
        result = splitter.feed(data[i : i + 1024])
        assert result.headers == []
        if result.body is not None:
            body.append(result.body)

    assert splitter.headers_complete
    assert b"".join(body) == data
    assert splitter.close().body is None
    assert warnings_from(caplog) == ["test.cgi [1]: no HTTP headers received"]


def test_pending_line_at_the_length_limit_is_still_buffered():
    splitter = HeaderStreamSplitter()

    assert splitter.feed(b"X-Long: " + b"v" * (MAX_HEADER_LINE - 8)).body is None
    result = splitter.feed(b"\n\nbody")

    assert result.headers == [("X-Long", "v" * (MAX_HEADER_LINE - 8))]
    assert result.body == b"body"
