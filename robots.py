"""
Robot Directives Module

This module keeps per-host allow/disallow path rules and crawl delays parsed
from robots.txt, with a 12-hour freshness window and lazy background refresh.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set
from urllib.robotparser import RobotFileParser

from utils import host_key


LEASE_TIME = 12 * 60 * 60  # seconds a fetched robots.txt stays fresh
FAILED_FETCH_LEASE = 10 * 60  # seconds a fail-open entry stands before a retry
DEFAULT_USER_AGENT_GROUP = "*"


def _prefix_length(prefixes: Iterable[str], path: str) -> int:
    """Length of the longest prefix matching path on '/'-terminated segments."""
    if not path.endswith('/'):
        path += '/'
    longest = 0
    for prefix in prefixes:
        if not prefix.endswith('/'):
            prefix += '/'
        if path.startswith(prefix) and len(prefix) > longest:
            longest = len(prefix)
    return longest


def _crawl_delays(text: str) -> Dict[str, float]:
    """
    Crawl-delay seconds by lowercased user-agent token.

    RobotFileParser only keeps whole-number delays, so fractional values
    such as "0.5" are read from the raw lines here.
    """
    delays: Dict[str, float] = {}
    agents: List[str] = []
    in_rules = False
    for line in text.splitlines():
        line = line.split('#', 1)[0].strip()
        if ':' not in line:
            continue
        key, value = (part.strip() for part in line.split(':', 1))
        key = key.lower()
        if key == 'user-agent':
            if in_rules:
                agents = []
                in_rules = False
            agents.append(value.lower())
            continue
        in_rules = True
        if key != 'crawl-delay':
            continue
        try:
            seconds = float(value)
        except ValueError:
            continue
        if seconds >= 0:
            for agent in agents:
                delays.setdefault(agent, seconds)
    return delays


@dataclass(frozen=True)
class RobotDirectives:
    """
    Allow/disallow rules and crawl delay for one host and user-agent group.

    Values are immutable; a refresh or delay change produces a new instance
    which replaces the cached one as a whole.
    """
    user_agent: str = DEFAULT_USER_AGENT_GROUP
    allowed_paths: FrozenSet[str] = frozenset()
    disallowed_paths: FrozenSet[str] = frozenset()
    delay_ms: int = 1000
    fetched_at: float = field(default_factory=time.time)
    lease_seconds: float = LEASE_TIME

    def __post_init__(self):
        if not self.user_agent or not self.user_agent.strip():
            raise ValueError("user_agent can't be empty")
        # A path listed both ways counts as disallowed
        object.__setattr__(self, 'allowed_paths', frozenset(self.allowed_paths) - frozenset(self.disallowed_paths))
        object.__setattr__(self, 'disallowed_paths', frozenset(self.disallowed_paths))

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.fetched_at > self.lease_seconds

    def is_allowed(self, path: str) -> bool:
        """
        A path is allowed unless its longest disallowed prefix is longer than
        its longest allowed prefix. Paths matching neither list are allowed.
        """
        path = path or '/'
        return not (_prefix_length(self.disallowed_paths, path) > _prefix_length(self.allowed_paths, path))

    def with_delay(self, delay_ms: int) -> "RobotDirectives":
        return replace(self, delay_ms=max(0, int(delay_ms)))

    @classmethod
    def permissive(cls, delay_ms: int, user_agent: str = DEFAULT_USER_AGENT_GROUP,
                   lease_seconds: float = LEASE_TIME) -> "RobotDirectives":
        """Directives that allow everything, used when robots.txt is unavailable."""
        return cls(user_agent=user_agent, delay_ms=delay_ms, lease_seconds=lease_seconds)

    @classmethod
    def from_robots_txt(cls, text: str, default_delay_ms: int,
                        user_agent: str = DEFAULT_USER_AGENT_GROUP,
                        fetched_at: Optional[float] = None) -> "RobotDirectives":
        """
        Parse robots.txt content for one user-agent group.

        Args:
            text: robots.txt body
            default_delay_ms: Delay to use when no Crawl-delay is given
            user_agent: Group to read rules for ("*" by default)
            fetched_at: Fetch timestamp (epoch seconds); now when omitted

        Returns:
            RobotDirectives for the group
        """
        parser = RobotFileParser()
        parser.parse(text.splitlines())

        entry = None
        for candidate in parser.entries:
            if user_agent != DEFAULT_USER_AGENT_GROUP and candidate.applies_to(user_agent):
                entry = candidate
                break
        if entry is None:
            entry = parser.default_entry

        allowed: Set[str] = set()
        disallowed: Set[str] = set()
        delay_ms = default_delay_ms

        if entry is not None:
            for rule in entry.rulelines:
                # "Disallow:" with no path means nothing is disallowed
                if not rule.path:
                    continue
                (allowed if rule.allowance else disallowed).add(rule.path)
            delays = _crawl_delays(text)
            for agent in entry.useragents:
                if agent.lower() in delays:
                    delay_ms = int(delays[agent.lower()] * 1000)
                    break

        return cls(
            user_agent=user_agent,
            allowed_paths=frozenset(allowed),
            disallowed_paths=frozenset(disallowed),
            delay_ms=delay_ms,
            fetched_at=time.time() if fetched_at is None else fetched_at,
        )


# Returns the robots.txt body, or None when the host has none. Raises when
# the fetch itself failed and should be retried soon.
RobotsFetcher = Callable[[str], Optional[str]]


class RobotsCache:
    """
    Thread-safe cache of RobotDirectives keyed by scheme://host.

    The first lookup for a host fetches robots.txt synchronously. Once an
    entry has expired, lookups answer None (allow) and a refresh runs in the
    background; the fresh entry replaces the stale one whole.
    """

    def __init__(self, fetcher: RobotsFetcher, default_delay_ms: int = 1000,
                 user_agent: str = DEFAULT_USER_AGENT_GROUP):
        self.fetcher = fetcher
        self.default_delay_ms = default_delay_ms
        self.user_agent = user_agent
        self._entries: Dict[str, RobotDirectives] = {}
        self._refreshing: Set[str] = set()
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="robots-refresh")
        self.logger = logging.getLogger(__name__)

    def get(self, url: str) -> Optional[RobotDirectives]:
        """Cached entry for the URL's host, fresh or not, without fetching."""
        with self._lock:
            return self._entries.get(host_key(url))

    def put(self, url: str, directives: RobotDirectives) -> None:
        with self._lock:
            self._entries[host_key(url)] = directives

    def directives_for(self, url: str) -> Optional[RobotDirectives]:
        """
        Directives for the URL's host, fetching them on first use.

        Returns:
            Fresh directives, or None when the cached entry has expired
            (a refresh is scheduled and the caller should allow)
        """
        key = host_key(url)
        with self._lock:
            entry = self._entries.get(key)

        if entry is None:
            entry = self._fetch(key)
            with self._lock:
                self._entries[key] = entry
            return entry

        if entry.is_expired():
            self._schedule_refresh(key)
            return None

        return entry

    def crawl_delay_ms(self, url: str) -> int:
        entry = self.get(url)
        if entry is None or entry.is_expired():
            return self.default_delay_ms
        return entry.delay_ms

    def _fetch(self, key: str) -> RobotDirectives:
        robots_url = f"{key}/robots.txt"
        try:
            text = self.fetcher(robots_url)
        except Exception as e:
            self.logger.warning(
                f"Could not fetch {robots_url}: {e}; allowing all paths for {FAILED_FETCH_LEASE // 60} minutes"
            )
            return RobotDirectives.permissive(self.default_delay_ms, self.user_agent, FAILED_FETCH_LEASE)

        if text is None:
            # No usable robots.txt, assume crawling is allowed
            self.logger.debug(f"No robots.txt for {key}; allowing all paths")
            return RobotDirectives.permissive(self.default_delay_ms, self.user_agent)

        directives = RobotDirectives.from_robots_txt(text, self.default_delay_ms, self.user_agent)
        self.logger.info(
            f"Loaded robots.txt for {key}: {len(directives.allowed_paths)} allowed, "
            f"{len(directives.disallowed_paths)} disallowed, delay {directives.delay_ms}ms"
        )
        return directives

    def _schedule_refresh(self, key: str) -> None:
        with self._lock:
            if key in self._refreshing:
                return
            self._refreshing.add(key)
        self.logger.debug(f"Robots directives for {key} expired; refreshing in background")
        self._executor.submit(self._refresh, key)

    def _refresh(self, key: str) -> None:
        try:
            entry = self._fetch(key)
            with self._lock:
                self._entries[key] = entry
        except Exception as e:
            self.logger.warning(f"Could not refresh robots.txt for {key}: {e}")
        finally:
            with self._lock:
                self._refreshing.discard(key)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
