"""
Common Utilities Module

This module contains helper functions used across the transport, including
logging setup, URL helpers, query string handling and keep-alive parsing.
"""

import logging
import math
import re
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import quote, unquote, urljoin, urlparse


def normalize_url(url: str, base_url: str = None) -> str:
    """
    Normalize and resolve relative URLs to absolute URLs

    Args:
        url: URL to normalize (can be relative or absolute)
        base_url: Base URL to resolve relative URLs against

    Returns:
        Normalized absolute URL
    """
    if not url:
        return ""

    url = url.strip()

    if url.startswith(('http://', 'https://')):
        return url

    if base_url:
        return urljoin(base_url, url)

    return url


def host_key(url: str) -> str:
    """scheme://host[:port] for a URL, used to key per-host state"""
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def route_for(url: str) -> Tuple[str, str, int]:
    """
    Connection route for a URL: scheme, host and effective port

    Raises:
        ValueError: If the URL has no scheme or host, or an invalid port
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in ('http', 'https') or not parsed.hostname:
        raise ValueError(f"Not an absolute http(s) URL: {url}")
    port = parsed.port or (443 if scheme == 'https' else 80)
    return (scheme, parsed.hostname.lower(), port)


def parse_query_string(query: str) -> Dict[str, str]:
    """
    Split a query string into an ordered name -> value map

    A leading '?' is ignored and a name without '=' maps to an empty string.
    Later duplicates replace earlier ones.
    """
    pairs: Dict[str, str] = {}
    if not query:
        return pairs

    if query.startswith('?'):
        query = query[1:]

    for pair in query.split('&'):
        if not pair:
            continue
        name, _, value = pair.partition('=')
        pairs[unquote(name)] = unquote(value)

    return pairs


def join_query_string(pairs: Mapping[str, str], encoded: bool = True) -> str:
    """Join name/value pairs into a query string, URL-encoding values if asked"""
    parts = []
    for name, value in pairs.items():
        value = "" if value is None else str(value)
        parts.append(f"{name}={quote(value, safe='') if encoded else value}")
    return '&'.join(parts)


_KEEP_ALIVE_TIMEOUT = re.compile(r'timeout\s*=\s*(\d+)', re.IGNORECASE)


def keep_alive_seconds(headers: Mapping[str, str], default: Optional[float]) -> Optional[float]:
    """
    How long a connection may stay pooled after this response

    Args:
        headers: Response headers (case-insensitive mapping)
        default: Duration to use when the server does not say

    Returns:
        0 for 'Connection: close', the Keep-Alive timeout when given,
        otherwise the default
    """
    connection = (headers.get('Connection') or '').lower()
    if 'close' in connection:
        return 0

    keep_alive = headers.get('Keep-Alive')
    if keep_alive:
        match = _KEEP_ALIVE_TIMEOUT.search(keep_alive)
        if match:
            return float(match.group(1))

    return default


def setup_logging(log_level: str = "INFO", log_file: str = None):
    """
    Set up logging configuration for the transport

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
    """
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_format = '%(asctime)s - %(levelname)s - %(message)s'
    console_handler.setFormatter(logging.Formatter(console_format, datefmt='%H:%M:%S'))
    handlers.append(console_handler)

    # File handler always records debug detail
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(log_format, datefmt='%Y-%m-%d %H:%M:%S'))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG,
        handlers=handlers,
        force=True
    )

    logger = logging.getLogger('aerodrome')
    logger.info(f"Logging initialized at {log_level} level" + (f" (file: {log_file})" if log_file else ""))

    # Reduce noise from third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)


def format_file_size(size_bytes: int) -> str:
    """
    Format a byte count in human-readable form

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "234 KB")
    """
    if size_bytes <= 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(size_names) - 1)
    p = math.pow(1024, i)
    s = round(size_bytes / p, 2)

    return f"{s} {size_names[i]}"


def format_duration(seconds: float) -> str:
    """
    Format a duration in human-readable form

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "250ms", "2m 15s")
    """
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)
    return f"{minutes}m {remaining_seconds}s"


def content_type_charset(content_type: Optional[str]) -> Optional[str]:
    """
    The charset parameter of a Content-Type value

    Args:
        content_type: Header value such as "text/html; charset=ISO-8859-1"

    Returns:
        Charset name without quotes, or None when not given
    """
    if not content_type:
        return None

    for param in content_type.split(';')[1:]:
        name, _, value = param.partition('=')
        if name.strip().lower() == 'charset':
            value = value.strip().strip('"\'')
            return value or None

    return None

