"""
Data Models Module

This module contains the value types passed between the transport components:
HTTP methods and codes, request bodies, the outgoing request, the immutable
API response and the per-call result.
"""

import json
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Optional, Tuple, Union
from urllib.parse import urlparse

from requests.structures import CaseInsensitiveDict

from errors import TransportError


class HttpMethod(Enum):
    """Request methods understood by the transport"""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @property
    def allows_body(self) -> bool:
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)

    @classmethod
    def parse(cls, method: Union[str, "HttpMethod"]) -> "HttpMethod":
        if isinstance(method, cls):
            return method
        try:
            return cls(str(method).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported HTTP method: {method}")


class ResponseCode(Enum):
    """Status codes the marketplace API answers with"""
    UNKNOWN = (0, "Unknown")
    SUCCESS = (200, "Success")
    CREATED = (201, "Created")
    ACCEPTED = (202, "Accepted")
    NO_CONTENT = (204, "No Content")
    MULTI_STATUS = (207, "Multi Status")
    BAD_REQUEST = (400, "Bad Request")
    UNAUTHORIZED = (401, "Unauthorized")
    FORBIDDEN = (403, "Forbidden")
    NOT_FOUND = (404, "Not Found")
    METHOD_NOT_ALLOWED = (405, "Method Not Allowed")
    INTERNAL_SERVER_ERROR = (500, "Internal Server Error")
    UNAVAILABLE = (503, "Unavailable")

    @property
    def code(self) -> int:
        return self.value[0]

    @property
    def caption(self) -> str:
        return self.value[1]

    @classmethod
    def create(cls, code: int) -> "ResponseCode":
        for member in cls:
            if member.code == code:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class PostFile:
    """A file on disk sent as a request body or multipart part"""
    path: Path
    content_type: str = "application/octet-stream"
    filename: str = ""
    content_encoding: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'path', Path(self.path))

    @property
    def has_filename(self) -> bool:
        return bool(self.filename)

    @property
    def has_content_encoding(self) -> bool:
        return bool(self.content_encoding)

    @property
    def upload_name(self) -> str:
        return self.filename or self.path.name

    def is_readable(self) -> bool:
        return self.path.is_file() and os.access(self.path, os.R_OK)


@dataclass(frozen=True)
class BytesBody:
    """An in-memory body, already encoded"""
    data: bytes
    content_type: Optional[str] = None


@dataclass(frozen=True)
class StreamBody:
    """A byte stream with a declared length"""
    stream: BinaryIO
    length: int
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class MultipartBody:
    """Multipart form data: plain text fields plus named file parts"""
    fields: Tuple[Tuple[str, str], ...] = ()
    files: Tuple[Tuple[str, PostFile], ...] = ()


Body = Union[BytesBody, StreamBody, MultipartBody, PostFile]


@dataclass(frozen=True)
class OutgoingRequest:
    """A transport-ready request. Built fresh for every call."""
    method: HttpMethod
    url: str
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: Optional[Body] = None

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc

    def with_header(self, name: str, value: str) -> "OutgoingRequest":
        headers = self.headers.copy()
        headers[name] = value
        return replace(self, headers=headers)

    def with_default_header(self, name: str, value: str) -> "OutgoingRequest":
        if name in self.headers:
            return self
        return self.with_header(name, value)

    def without_headers(self, *names: str) -> "OutgoingRequest":
        headers = self.headers.copy()
        for name in names:
            headers.pop(name, None)
        return replace(self, headers=headers)

    def redirected(self, url: str, status_code: int) -> "OutgoingRequest":
        """
        Build the request for the next redirect hop.

        303 becomes GET for every method but HEAD; other statuses keep the
        method, since only GET and HEAD follow them.
        The body is dropped whenever the method changes, and Authorization is
        dropped when the hop leaves the current host.
        """
        method = self.method
        if status_code == 303 and method != HttpMethod.HEAD:
            method = HttpMethod.GET

        request = replace(self, method=method, url=url)
        if method != self.method:
            request = replace(request, body=None).without_headers('Content-Type', 'Content-Length')
        if urlparse(url).netloc != self.host:
            request = request.without_headers('Authorization')
        return request


_PROTOCOL_VERSIONS = {10: "HTTP/1.0", 11: "HTTP/1.1", 20: "HTTP/2"}


def protocol_version_name(version: Any) -> str:
    """Map urllib3's integer protocol version to its display name"""
    return _PROTOCOL_VERSIONS.get(version, "HTTP/1.1")


@dataclass(frozen=True)
class ApiResponse:
    """Immutable, fully read HTTP response"""
    status_code: int
    reason: str = ""
    protocol_version: str = "HTTP/1.1"
    headers: Tuple[Tuple[str, str], ...] = ()
    content: bytes = b""
    charset: str = "UTF-8"
    redirect_chain: Tuple[str, ...] = ()
    url: str = ""
    truncated: bool = False

    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def is_failure(self) -> bool:
        return 400 <= self.status_code < 600

    def is_request_fail(self) -> bool:
        return 400 <= self.status_code < 500

    def is_server_failure(self) -> bool:
        return 500 <= self.status_code < 600

    @property
    def response_code(self) -> ResponseCode:
        return ResponseCode.create(self.status_code)

    @property
    def content_length(self) -> int:
        """Declared Content-Length: 0 when absent, -1 when unparseable"""
        value = self.header('Content-Length')
        if value is None:
            return 0
        try:
            return int(value)
        except ValueError:
            return -1

    @property
    def text(self) -> str:
        # Binary passthrough has no charset and no text form
        if not self.charset:
            return ""
        try:
            return self.content.decode(self.charset, errors='replace')
        except LookupError:
            return self.content.decode('utf-8', errors='replace')

    def header(self, name: str) -> Optional[str]:
        """First value of a header, case-insensitive"""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def header_values(self, name: str) -> Tuple[str, ...]:
        lowered = name.lower()
        return tuple(value for key, value in self.headers if key.lower() == lowered)

    def is_json(self) -> bool:
        return self.text.strip().startswith(('{', '['))

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass(frozen=True)
class RequestResult:
    """Outcome of a single execute() call"""
    url: str
    response: Optional[ApiResponse] = None
    error: Optional[TransportError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def unwrap(self) -> ApiResponse:
        if self.error is not None:
            raise self.error
        return self.response
