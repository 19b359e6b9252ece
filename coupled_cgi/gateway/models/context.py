"""
Input context models.

Encapsulates the request facts needed to build a CGI environment.
"""

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class RequestContext(BaseModel):
    """
    Facts about one incoming request.

    This model decouples the CGI layer from Starlette's Request object.
    """

    method: str
    scheme: str = "http"
    host: str = ""
    path: str = "/"
    query_string: str = ""
    headers: List[Tuple[str, str]] = Field(default_factory=list)
    body_length: int = 0
    content_type: Optional[str] = None
    remote_addr: str = ""
    remote_port: Optional[int] = None
    local_addr: str = ""
    local_port: Optional[int] = None
    remote_host: Optional[str] = None
    protocol_version: str = "1.1"
    script_name: str = ""
    path_info: str = ""

    @property
    def request_uri(self) -> str:
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path
