"""
Redirect Policy Module

This module decides whether and where a redirect is followed: it cleans the
Location header, resolves it against the request URL, consults the robot
directives of the target host and spaces consecutive hops to one host by the
crawl delay.
"""

import logging
import re
from typing import Optional
from urllib.parse import urlsplit

import requests

from concurrency import HostThrottle
from errors import MalformedRedirectError
from models import HttpMethod, OutgoingRequest
from robots import RobotsCache
from utils import host_key, normalize_url


REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
SEE_OTHER = 303

# 303 is followed for any method; the other redirects only for these
REPLAYABLE_METHODS = frozenset({HttpMethod.GET, HttpMethod.HEAD})

_JSESSIONID = re.compile(r';jsessionid=[^?#/;]*', re.IGNORECASE)


def sanitize_location(location: str) -> str:
    """Escape '<' and strip ;jsessionid=... session ids from a Location value"""
    location = location.strip().replace('<', '%3C')
    return _JSESSIONID.sub('', location)


class RedirectPolicy:
    """Robots-aware, crawl-delayed redirect decisions"""

    def __init__(self, robots_cache: Optional[RobotsCache] = None,
                 throttle: Optional[HostThrottle] = None,
                 respect_robots: bool = True,
                 default_delay_ms: int = 1000):
        self.robots_cache = robots_cache
        self.throttle = throttle or HostThrottle()
        self.respect_robots = respect_robots
        self.default_delay_ms = default_delay_ms
        self.logger = logging.getLogger(__name__)

    def is_redirect(self, response: requests.Response, method: HttpMethod) -> bool:
        """
        Whether the response is a redirect to follow for a request of this method.

        A body-carrying request answered with 301, 302, 307 or 308 is not
        replayed; the redirect itself is returned to the caller.
        """
        if response.status_code not in REDIRECT_STATUSES:
            return False
        return response.status_code == SEE_OTHER or method in REPLAYABLE_METHODS

    def resolve_redirect(self, request: OutgoingRequest, response: requests.Response) -> Optional[str]:
        """
        Work out the next hop for a redirect response.

        Args:
            request: The request that produced the redirect
            response: The redirect response (only its headers are used)

        Returns:
            Absolute target URL, or None when robots directives disallow it

        Raises:
            MalformedRedirectError: If Location is missing or not a usable URL
        """
        location = response.headers.get('Location')
        if not location or not location.strip():
            raise MalformedRedirectError(
                f"{response.status_code} redirect without a Location header", url=request.url
            )

        target = normalize_url(sanitize_location(location), request.url)
        try:
            parts = urlsplit(target)
            parts.port  # raises ValueError for a malformed port
        except ValueError as e:
            raise MalformedRedirectError(f"Malformed redirect location: {location}", cause=e, url=request.url)

        if parts.scheme.lower() not in ('http', 'https') or not parts.hostname:
            raise MalformedRedirectError(f"Redirect location is not an http(s) URL: {location}", url=request.url)

        if self.respect_robots and self.robots_cache is not None:
            directives = self.robots_cache.directives_for(target)
            if directives is not None and not directives.is_allowed(parts.path or '/'):
                self.logger.warning(f"Redirect from {request.url} to {target} disallowed by robots.txt")
                return None

        self.logger.debug(f"Following {response.status_code} redirect from {request.url} to {target}")
        return target

    def crawl_delay_ms(self, url: str) -> int:
        """Robots Crawl-delay for the URL's host when known, else the configured delay"""
        if self.respect_robots and self.robots_cache is not None:
            return self.robots_cache.crawl_delay_ms(url)
        return self.default_delay_ms

    def wait_for_crawl_delay(self, url: str) -> float:
        """Block until the next request to url's host may go out. Returns seconds slept."""
        return self.throttle.wait(host_key(url), self.crawl_delay_ms(url))

    def record_request(self, url: str) -> None:
        self.throttle.record(host_key(url))
