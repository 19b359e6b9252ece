"""
CGI stderr collector.

Logs a CGI program's standard error one line per record.
"""

import logging
from typing import List

logger = logging.getLogger("gateway.cgi_stderr")


class StderrCollector:
    def __init__(self, command: str, pid: int):
        self.command = command
        self.pid = pid
        self._partial = b""

    def feed(self, chunk: bytes) -> None:
        """Log every complete line; keep the unterminated tail for the next chunk."""
        lines: List[bytes] = (self._partial + chunk).split(b"\n")
        self._partial = lines.pop()
        for line in lines:
            self._emit(line)

    def close(self) -> None:
        if self._partial:
            self._emit(self._partial)
            self._partial = b""

    def _emit(self, line: bytes) -> None:
        text = line.rstrip(b"\r").decode("utf-8", errors="replace")
        logger.error(
            "%s [%d]: STDERR: %s",
            self.command,
            self.pid,
            text,
            extra={"cgi_command": self.command, "cgi_pid": self.pid},
        )
