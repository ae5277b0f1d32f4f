"""
Response Reader Module

This module reads a streamed response body into an immutable ApiResponse:
charset detection, optional gzip inflation and a hard ceiling on the number
of bytes kept.
"""

import codecs
import logging
from dataclasses import replace
from typing import Iterable, Mapping, Optional

import requests
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from errors import ReadFailureError
from models import ApiResponse, protocol_version_name
from utils import content_type_charset


CHUNK_SIZE = 1024
DEFAULT_CHARSET = "UTF-8"
BINARY_MEDIA_TYPE = "application/octet-stream"


def detect_charset(content_type: Optional[str]) -> str:
    """
    Charset to decode a body with.

    Returns:
        "" when the header is exactly application/octet-stream (binary
        passthrough), the declared charset when Python knows it, otherwise UTF-8
    """
    if (content_type or '').strip().lower() == BINARY_MEDIA_TYPE:
        return ""

    charset = content_type_charset(content_type)
    if not charset:
        return DEFAULT_CHARSET

    try:
        codecs.lookup(charset)
    except LookupError:
        return DEFAULT_CHARSET
    return charset


def is_gzip_encoded(headers: Mapping[str, str]) -> bool:
    encoding = headers.get('Content-Encoding') or ''
    return any(part.strip().lower() == 'gzip' for part in encoding.split(','))


class ResponseReader:
    """Reads response bodies up to a configured maximum size"""

    def __init__(self, max_download_size: int, allow_gzip: bool = False):
        self.max_download_size = max_download_size
        self.allow_gzip = allow_gzip
        self.logger = logging.getLogger(__name__)

    def read(self, response: requests.Response, max_bytes: Optional[int] = None,
             decompress: Optional[bool] = None,
             redirect_chain: Iterable[str] = ()) -> ApiResponse:
        """
        Read the whole (bounded) body of a streamed response.

        Args:
            response: Response obtained with stream=True
            max_bytes: Byte ceiling; defaults to max_download_size, negative is unbounded
            decompress: Inflate gzip content; decided from the headers when None
            redirect_chain: URLs visited on the way to this response

        Returns:
            ApiResponse holding no live connection

        Raises:
            ReadFailureError: If the body stream fails part way through
        """
        limit = self.max_download_size if max_bytes is None else max_bytes
        if decompress is None:
            decompress = self.allow_gzip and is_gzip_encoded(response.headers)

        content, truncated = self._read_body(response, limit, decompress)
        self.close_quietly(response)

        headers = getattr(response.raw, 'headers', None) or response.headers
        api_response = ApiResponse(
            status_code=response.status_code,
            reason=response.reason or "",
            protocol_version=protocol_version_name(getattr(response.raw, 'version', None)),
            headers=tuple((str(name), str(value)) for name, value in headers.items()),
            content=content,
            charset=detect_charset(response.headers.get('Content-Type')),
            redirect_chain=tuple(redirect_chain),
            url=response.url or "",
            truncated=truncated,
        )

        # A HEAD answer declares the length of a body it never sends
        is_head = response.request is not None and response.request.method == "HEAD"
        if limit >= 0 and not is_head and api_response.content_length > limit:
            api_response = replace(api_response, truncated=True)

        if api_response.truncated:
            self.logger.warning(f"Response body from {api_response.url} truncated at {limit} bytes")
        self.logger.debug(
            f"{api_response.protocol_version} {api_response.status_code} {api_response.reason} "
            f"({len(content)} bytes) from {api_response.url}"
        )
        return api_response

    def _read_body(self, response: requests.Response, limit: int, decompress: bool):
        if response.raw is None:
            return b"", False

        buffer = bytearray()
        truncated = False
        try:
            for chunk in response.raw.stream(CHUNK_SIZE, decode_content=decompress):
                if not chunk:
                    continue
                buffer.extend(chunk)
                # Read past the ceiling by one chunk so an exact fit is not reported as cut
                if 0 <= limit < len(buffer):
                    del buffer[limit:]
                    truncated = True
                    break
        except (Urllib3HTTPError, requests.exceptions.RequestException, OSError) as e:
            self.close_quietly(response)
            raise ReadFailureError("Failed reading response body", cause=e, url=response.url)

        return bytes(buffer), truncated

    def close_quietly(self, response: requests.Response) -> None:
        """Release the response's connection; failures are only logged."""
        try:
            response.close()
        except (Urllib3HTTPError, requests.exceptions.RequestException, OSError) as e:
            self.logger.debug(f"Ignoring error while closing response from {response.url}: {e}")
