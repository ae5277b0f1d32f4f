"""
Request Builder Module

This module turns a method, a URL and optional headers/body into a
transport-ready OutgoingRequest: relative URLs are rewritten onto the locked
host, default headers are injected and attachments are checked before any
network I/O happens.
"""

import logging
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlsplit

from requests.structures import CaseInsensitiveDict

from config import ClientConfig
from errors import AttachmentNotFoundError, InvalidUrlError, UnsupportedEncodingError
from models import BytesBody, HttpMethod, MultipartBody, OutgoingRequest, PostFile, StreamBody
from utils import content_type_charset


DEFAULT_BODY_CHARSET = "UTF-8"


class RequestBuilder:
    """Builds OutgoingRequest values for one client configuration"""

    def __init__(self, config: ClientConfig):
        self.config = config
        self.host_lock = config.host_lock
        self.logger = logging.getLogger(__name__)

    def resolve_url(self, url: str) -> str:
        """
        Make a URL absolute against the locked host when host locking is on.

        Absolute http(s) URLs are used verbatim. Spaces are escaped as %20.

        Raises:
            InvalidUrlError: If the result is not a usable http(s) URL
        """
        if url is None or not str(url).strip():
            raise InvalidUrlError("URL cannot be empty")

        url = str(url).strip().replace(' ', '%20')

        if self.host_lock is not None and not url.lower().startswith(('http://', 'https://')):
            lock = self.host_lock
            path = lock.base_path + '/' + url.lstrip('/')
            url = f"{lock.scheme}://{lock.netloc}{path}"

        try:
            parts = urlsplit(url)
            parts.port  # raises ValueError for a malformed port
        except ValueError as e:
            raise InvalidUrlError("Malformed URL", cause=e, url=url)

        if parts.scheme.lower() not in ('http', 'https') or not parts.hostname:
            raise InvalidUrlError("URL must be an absolute http(s) URL", url=url)

        return url

    def default_headers(self) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict()
        headers['Accept'] = self.config.accept
        headers['Accept-Language'] = self.config.accept_language
        if self.config.allow_gzip:
            headers['Accept-Encoding'] = 'gzip'
        return headers

    def build(self, method: Union[str, HttpMethod], url: str,
              headers: Optional[Mapping[str, str]] = None,
              body: Any = None) -> OutgoingRequest:
        """
        Build a request ready to dispatch.

        Args:
            method: HTTP method name or HttpMethod
            url: Absolute URL, or a path when host locking is configured
            headers: Caller headers; these override the defaults
            body: str, bytes, BytesBody, StreamBody, MultipartBody or PostFile

        Returns:
            OutgoingRequest

        Raises:
            InvalidUrlError: If the URL is malformed
            UnsupportedEncodingError: If a string body cannot be encoded
            AttachmentNotFoundError: If an attached file is missing or unreadable
            ValueError: If a body is given for a method that cannot carry one
        """
        method = HttpMethod.parse(method)
        resolved = self.resolve_url(url)

        merged = self.default_headers()
        for name, value in (headers or {}).items():
            if value is not None:
                merged[name] = str(value)

        request_body = None
        if body is not None:
            if not method.allows_body:
                raise ValueError(f"{method.value} requests cannot carry a body")
            request_body = self._attach(body, merged, resolved)

        self.logger.debug(f"Built {method.value} {resolved}")
        return OutgoingRequest(method=method, url=resolved, headers=merged, body=request_body)

    def _attach(self, body: Any, headers: CaseInsensitiveDict, url: str):
        if isinstance(body, str):
            charset = content_type_charset(headers.get('Content-Type')) or DEFAULT_BODY_CHARSET
            try:
                data = body.encode(charset)
            except (LookupError, UnicodeEncodeError) as e:
                raise UnsupportedEncodingError(f"Cannot encode request body as {charset}", cause=e, url=url)
            if 'Content-Type' not in headers:
                headers['Content-Type'] = f"text/plain; charset={charset}"
            return BytesBody(data, headers['Content-Type'])

        if isinstance(body, (bytes, bytearray)):
            return BytesBody(bytes(body), headers.get('Content-Type'))

        if isinstance(body, BytesBody):
            if body.content_type and 'Content-Type' not in headers:
                headers['Content-Type'] = body.content_type
            return body

        if isinstance(body, StreamBody):
            if body.length < 0:
                raise ValueError("StreamBody length cannot be negative")
            if 'Content-Type' not in headers:
                headers['Content-Type'] = body.content_type
            return body

        if isinstance(body, PostFile):
            self._check_attachment(body, url)
            if 'Content-Type' not in headers:
                headers['Content-Type'] = body.content_type
            if body.has_content_encoding and 'Content-Encoding' not in headers:
                headers['Content-Encoding'] = body.content_encoding
            return body

        if isinstance(body, MultipartBody):
            for _, post_file in body.files:
                self._check_attachment(post_file, url)
            # requests generates the multipart boundary itself
            headers.pop('Content-Type', None)
            return body

        raise TypeError(f"Unsupported request body type: {type(body).__name__}")

    def _check_attachment(self, post_file: PostFile, url: str) -> None:
        if not post_file.is_readable():
            raise AttachmentNotFoundError(f"Attachment not found or not readable: {post_file.path}", url=url)
