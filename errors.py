"""
Transport Error Module

This module defines the typed failures raised by the transport core. Every
error names the phase of a request that failed (build, connect, redirect or
read) and keeps the underlying cause for logging.

HTTP 4xx/5xx answers are not errors here; they come back as ApiResponse
values whose predicates report the failure.
"""

from typing import Optional


class TransportError(Exception):
    """Base class for every failure surfaced by the transport core"""

    phase = "transport"

    def __init__(self, message: str, cause: Optional[BaseException] = None, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.url = url
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = self.message
        if self.url:
            text += f" (URL: {self.url})"
        if self.cause is not None:
            text += f": {self.cause}"
        return text


class BuildError(TransportError):
    """The request could not be assembled"""
    phase = "build"


class InvalidUrlError(BuildError):
    """The URL could not be parsed or is not an http(s) URL"""


class AttachmentNotFoundError(BuildError):
    """A file attached to the request does not exist or cannot be read"""


class UnsupportedEncodingError(BuildError):
    """A string body could not be encoded with the requested charset"""


class ConnectError(TransportError):
    """No usable connection to the target"""
    phase = "connect"


class PoolExhaustedError(ConnectError):
    """No pooled connection became free before the acquire timeout"""


class PoolClosedError(ConnectError):
    """The connection pool has been shut down"""


class TransportFailureError(ConnectError):
    """Connect, TLS handshake or socket failure while sending the request"""


class RedirectError(TransportError):
    """A redirect could not be followed"""
    phase = "redirect"


class MalformedRedirectError(RedirectError):
    """A redirect response without a usable Location header"""


class RedirectBlockedError(RedirectError):
    """Redirect disallowed by robots directives or over the hop limit"""


class ReadFailureError(TransportError):
    """The response body could not be read completely"""
    phase = "read"
