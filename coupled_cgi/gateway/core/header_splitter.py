"""
CGI output header splitter.

Splits a CGI program's stdout into the header block and the body. Chunks may
be cut anywhere, even one byte at a time; the splitter only buffers the tail
it has not classified yet and never inspects bytes after the header block.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

logger = logging.getLogger("gateway.header_splitter")

# "Name: value" up to LF or CRLF.
HEADER_LINE = re.compile(rb"([^\s:]+):[ \t]*([^\r\n]*?)[ \t]*\r?\n")

# An unterminated line that could still turn into a header or a blank line.
PARTIAL_LINE = re.compile(rb"\r|[^\s:]*|[^\s:]+:[^\r\n]*\r?")

# A pending line longer than this is taken as body rather than buffered.
MAX_HEADER_LINE = 8192

Header = Tuple[str, str]


class SplitterState(str, Enum):
    PARSING_HEADERS = "parsing_headers"
    STREAMING_BODY = "streaming_body"


@dataclass
class SplitResult:
    """
    Output of one feed() or close() call.

    ``body`` is None while the header block is still being parsed. Once the
    body starts it is bytes, possibly empty: an empty body still marks the
    end of the header block.
    """

    headers: List[Header] = field(default_factory=list)
    body: Optional[bytes] = None


class HeaderStreamSplitter:
    """
    Two-state parser: PARSING_HEADERS until a blank line (or content that
    cannot be a header) is seen, then STREAMING_BODY for good.
    """

    def __init__(self, log_prefix: str = "cgi"):
        self.log_prefix = log_prefix
        self.state = SplitterState.PARSING_HEADERS
        self.headers_seen = False
        self._buffer = b""

    @property
    def headers_complete(self) -> bool:
        return self.state is SplitterState.STREAMING_BODY

    def feed(self, chunk: bytes) -> SplitResult:
        if self.headers_complete:
            return SplitResult(body=chunk)

        buffer = self._buffer + chunk
        headers: List[Header] = []
        pos = 0
        while True:
            match = HEADER_LINE.match(buffer, pos)
            if not match:
                break
            headers.append((match.group(1).decode("latin-1"), match.group(2).decode("latin-1")))
            pos = match.end()
        if headers:
            self.headers_seen = True

        rest = buffer[pos:]
        if rest.startswith(b"\r\n"):
            return SplitResult(headers, self._start_body(rest[2:]))
        if rest.startswith(b"\n"):
            return SplitResult(headers, self._start_body(rest[1:]))
        if (
            b"\n" in rest
            or len(rest) > MAX_HEADER_LINE
            or not PARTIAL_LINE.fullmatch(rest)
        ):
            self._warn_unterminated()
            return SplitResult(headers, self._start_body(rest))

        self._buffer = rest
        return SplitResult(headers)

    def close(self) -> SplitResult:
        """
        Flush at end of stream.

        Whatever is still buffered is returned as body.
        """
        if self.headers_complete:
            return SplitResult()

        rest = self._buffer
        if rest or not self.headers_seen:
            self._warn_unterminated()
        return SplitResult(body=self._start_body(rest))

    def _start_body(self, data: bytes) -> bytes:
        self.state = SplitterState.STREAMING_BODY
        self._buffer = b""
        return data

    def _warn_unterminated(self) -> None:
        if self.headers_seen:
            logger.warning("%s: malformed HTTP header or no empty line after", self.log_prefix)
        else:
            logger.warning("%s: no HTTP headers received", self.log_prefix)
