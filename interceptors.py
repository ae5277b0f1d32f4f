"""
Request Interceptors

Ordered, pure request -> request transforms applied to every outgoing
request, plus the response-side check deciding whether a body gets inflated.
"""

from typing import Callable, Iterable, List, Mapping

from config import ClientConfig
from models import OutgoingRequest
from reader import is_gzip_encoded


RequestInterceptor = Callable[[OutgoingRequest], OutgoingRequest]


def user_agent_interceptor(user_agent: str) -> RequestInterceptor:
    """Always send the configured User-Agent, replacing any caller value"""
    def apply(request: OutgoingRequest) -> OutgoingRequest:
        return request.with_header('User-Agent', user_agent)
    return apply


def accept_interceptor(accept: str, accept_language: str, allow_gzip: bool = False) -> RequestInterceptor:
    """Add Accept headers the request does not already carry"""
    def apply(request: OutgoingRequest) -> OutgoingRequest:
        request = request.with_default_header('Accept', accept)
        request = request.with_default_header('Accept-Language', accept_language)
        if allow_gzip:
            request = request.with_default_header('Accept-Encoding', 'gzip')
        return request
    return apply


def default_request_interceptors(config: ClientConfig) -> List[RequestInterceptor]:
    return [
        user_agent_interceptor(config.user_agent),
        accept_interceptor(config.accept, config.accept_language, config.allow_gzip),
    ]


def apply_interceptors(request: OutgoingRequest, interceptors: Iterable[RequestInterceptor]) -> OutgoingRequest:
    for interceptor in interceptors:
        request = interceptor(request)
    return request


def should_inflate(headers: Mapping[str, str], allow_gzip: bool) -> bool:
    """True when the response is gzip-encoded and the client accepts gzip"""
    return allow_gzip and is_gzip_encoded(headers)
