"""
HTTP Client Module

This module ties the transport together: it leases pooled connections,
dispatches requests, follows redirects through the redirect policy and hands
the final response to the reader. Transport failures are returned as
RequestResult values by execute() and raised by request().
"""

import logging
from contextlib import ExitStack, contextmanager
from typing import Any, BinaryIO, Iterator, List, Mapping, Optional

import requests
import urllib3
from requests.cookies import RequestsCookieJar
from urllib3.exceptions import InsecureRequestWarning

from builder import RequestBuilder
from config import ClientConfig
from errors import (
    AttachmentNotFoundError, InvalidUrlError, PoolClosedError, ReadFailureError,
    RedirectBlockedError, TransportError, TransportFailureError,
)
from interceptors import RequestInterceptor, apply_interceptors, default_request_interceptors, should_inflate
from models import (
    ApiResponse, BytesBody, HttpMethod, MultipartBody, OutgoingRequest, PostFile,
    RequestResult, StreamBody,
)
from pool import ConnectionPool, PooledConnection
from reader import ResponseReader
from redirect import RedirectPolicy
from robots import RobotsCache
from utils import keep_alive_seconds, route_for


ROBOTS_MAX_BYTES = 500 * 1024


class _SizedStream:
    """File-like wrapper that tells requests the body length up front"""

    def __init__(self, stream: BinaryIO, length: int):
        self.stream = stream
        self.length = length

    def __len__(self) -> int:
        return self.length

    def read(self, size: int = -1) -> bytes:
        return self.stream.read(size)

    def __iter__(self):
        while True:
            chunk = self.stream.read(8192)
            if not chunk:
                break
            yield chunk


class HttpClient:
    """Pooled, policy-aware HTTP client"""

    def __init__(self, config: ClientConfig, pool: ConnectionPool,
                 redirect_policy: Optional[RedirectPolicy] = None,
                 request_interceptors: Optional[List[RequestInterceptor]] = None):
        """
        Initialize the client.

        Args:
            config: Immutable client configuration
            pool: Shared connection pool; its lifecycle belongs to the caller
            redirect_policy: Policy for following redirects; a robots-aware one
                backed by this client is created when omitted
            request_interceptors: Transforms applied to every request in order;
                defaults to User-Agent then Accept headers
        """
        self.config = config
        self.pool = pool
        self.logger = logging.getLogger(__name__)

        self.builder = RequestBuilder(config)
        self.reader = ResponseReader(config.max_download_size, config.allow_gzip)
        if request_interceptors is None:
            request_interceptors = default_request_interceptors(config)
        self.request_interceptors = list(request_interceptors)

        self._owns_robots_cache = redirect_policy is None
        if redirect_policy is None:
            robots_cache = None
            if config.respect_robots_txt:
                robots_cache = RobotsCache(self.fetch_robots, default_delay_ms=config.crawl_delay_ms)
            redirect_policy = RedirectPolicy(
                robots_cache=robots_cache,
                respect_robots=config.respect_robots_txt,
                default_delay_ms=config.crawl_delay_ms,
            )
        self.redirect_policy = redirect_policy

        # One cookie store shared by every connection this client leases
        self.cookies = RequestsCookieJar()

        self.verify = not config.allow_untrusted_ssl
        if config.allow_untrusted_ssl:
            urllib3.disable_warnings(InsecureRequestWarning)
            self.logger.warning("TLS certificate verification is disabled for this client")

    def execute(self, request: OutgoingRequest, max_download_size: Optional[int] = None) -> RequestResult:
        """
        Run a built request to completion.

        Args:
            request: Request from RequestBuilder.build
            max_download_size: Byte ceiling for this call; the configured one when None

        Returns:
            RequestResult carrying either the ApiResponse or the TransportError
        """
        try:
            response = self._perform(request, max_bytes=max_download_size,
                                     follow_redirects=self.config.follow_redirects)
            return RequestResult(url=request.url, response=response)
        except TransportError as e:
            self.logger.error(f"{request.method.value} {request.url} failed in {e.phase} phase: {e}")
            return RequestResult(url=request.url, error=e)

    def request(self, method, url: str, headers: Optional[Mapping[str, str]] = None,
                body: Any = None) -> ApiResponse:
        """
        Build and execute a request.

        Returns:
            ApiResponse; 4xx/5xx answers are responses, not exceptions

        Raises:
            TransportError: Build, connect, redirect or read failure
            ValueError: If a body is given for a method that cannot carry one
        """
        outgoing = self.builder.build(method, url, headers, body)
        return self.execute(outgoing).unwrap()

    def get(self, url: str, headers: Optional[Mapping[str, str]] = None) -> ApiResponse:
        return self.request(HttpMethod.GET, url, headers)

    def head(self, url: str, headers: Optional[Mapping[str, str]] = None) -> ApiResponse:
        return self.request(HttpMethod.HEAD, url, headers)

    def delete(self, url: str, headers: Optional[Mapping[str, str]] = None) -> ApiResponse:
        return self.request(HttpMethod.DELETE, url, headers)

    def post(self, url: str, body: Any = None, headers: Optional[Mapping[str, str]] = None) -> ApiResponse:
        return self.request(HttpMethod.POST, url, headers, body)

    def put(self, url: str, body: Any = None, headers: Optional[Mapping[str, str]] = None) -> ApiResponse:
        return self.request(HttpMethod.PUT, url, headers, body)

    def patch(self, url: str, body: Any = None, headers: Optional[Mapping[str, str]] = None) -> ApiResponse:
        return self.request(HttpMethod.PATCH, url, headers, body)

    def fetch_robots(self, url: str) -> Optional[str]:
        """
        Fetch a robots.txt body for the robots cache.

        Redirects are not followed and the body is capped. Any other non-2xx
        answer yields None, meaning the host has no robots.txt.

        Raises:
            TransportError: If the fetch failed, or the server answered 429
                or 5xx; the cache then allows everything for a short while
        """
        request = self.builder.build(HttpMethod.GET, url, {'Accept': 'text/plain, */*;q=0.8'})
        response = self._perform(request, max_bytes=ROBOTS_MAX_BYTES, follow_redirects=False)

        if response.status_code == 429 or response.is_server_failure():
            raise TransportFailureError(f"robots.txt unavailable (HTTP {response.status_code})", url=url)
        if not response.is_success():
            self.logger.debug(f"No robots.txt at {url} (HTTP {response.status_code})")
            return None
        return response.content.decode(response.charset or 'utf-8', errors='replace')

    def _perform(self, request: OutgoingRequest, max_bytes: Optional[int] = None,
                 follow_redirects: bool = True) -> ApiResponse:
        if self.pool.closed:
            raise PoolClosedError("Connection pool has been shut down", url=request.url)

        request = apply_interceptors(request, self.request_interceptors)
        redirect_chain: List[str] = []

        while True:
            with self._lease(request) as conn:
                response = self._dispatch(conn, request)
                conn.keep_alive(keep_alive_seconds(response.headers, self.config.read_timeout))

                if not (follow_redirects and self.redirect_policy.is_redirect(response, request.method)):
                    decompress = should_inflate(response.headers, self.config.allow_gzip)
                    return self.reader.read(response, max_bytes, decompress, redirect_chain)

                self.reader.close_quietly(response)

            # The connection is back in the pool while robots and crawl delay are handled
            target = self._next_hop(request, response, redirect_chain)
            request = request.redirected(target, response.status_code)

    def _next_hop(self, request: OutgoingRequest, response: requests.Response,
                  redirect_chain: List[str]) -> str:
        if len(redirect_chain) >= self.config.max_redirects:
            raise RedirectBlockedError(f"Exceeded {self.config.max_redirects} redirects", url=request.url)

        target = self.redirect_policy.resolve_redirect(request, response)
        if target is None:
            raise RedirectBlockedError("Redirect disallowed by robots.txt", url=request.url)

        redirect_chain.append(target)
        self.redirect_policy.wait_for_crawl_delay(target)
        return target

    @contextmanager
    def _lease(self, request: OutgoingRequest) -> Iterator[PooledConnection]:
        try:
            route = route_for(request.url)
        except ValueError as e:
            raise InvalidUrlError("Cannot route request", cause=e, url=request.url)

        with self.pool.connection(route) as conn:
            conn.session.cookies = self.cookies
            yield conn

    def _dispatch(self, conn: PooledConnection, request: OutgoingRequest) -> requests.Response:
        kwargs = {
            'headers': dict(request.headers),
            'timeout': self.config.timeout,
            'verify': self.verify,
            'stream': True,
            'allow_redirects': False,
        }

        with ExitStack() as stack:
            body = request.body
            if isinstance(body, BytesBody):
                kwargs['data'] = body.data
            elif isinstance(body, StreamBody):
                kwargs['data'] = _SizedStream(body.stream, body.length)
            elif isinstance(body, PostFile):
                kwargs['data'] = self._open(stack, body, request.url)
            elif isinstance(body, MultipartBody):
                parts = [(name, (None, value)) for name, value in body.fields]
                for name, post_file in body.files:
                    handle = self._open(stack, post_file, request.url)
                    parts.append((name, (post_file.upload_name, handle, post_file.content_type)))
                kwargs['files'] = parts

            self.logger.debug(f"{request.method.value} {request.url}")
            self.redirect_policy.record_request(request.url)
            try:
                return conn.session.request(request.method.value, request.url, **kwargs)
            except requests.exceptions.ReadTimeout as e:
                raise ReadFailureError("Timed out waiting for the response", cause=e, url=request.url)
            except requests.exceptions.RequestException as e:
                raise TransportFailureError("Request could not be sent", cause=e, url=request.url)

    def _open(self, stack: ExitStack, post_file: PostFile, url: str) -> BinaryIO:
        try:
            return stack.enter_context(open(post_file.path, 'rb'))
        except OSError as e:
            raise AttachmentNotFoundError(f"Cannot open attachment {post_file.path}", cause=e, url=url)

    def close(self) -> None:
        """Stop background robots refreshes. The pool is left to its owner."""
        if self._owns_robots_cache and self.redirect_policy.robots_cache is not None:
            self.redirect_policy.robots_cache.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
