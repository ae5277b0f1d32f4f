"""
Connection Pool Module

This module provides the bounded, shared pool of reusable transport
connections and the background reaper that closes idle and expired ones.

Each pooled connection wraps a requests.Session whose adapter holds a single
keep-alive socket, so the pool's bookkeeping decides how many sockets exist
per route and overall.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from urllib3.util.retry import Retry

from errors import PoolClosedError, PoolExhaustedError


Route = Tuple[str, str, int]

DEFAULT_MAX_TOTAL = 200
DEFAULT_MAX_PER_ROUTE = 20
DEFAULT_IDLE_TIMEOUT = 30.0
DEFAULT_REAPER_INTERVAL = 5.0


def create_session(connect_retries: int = 0) -> requests.Session:
    """
    Create the transport session behind one pooled connection.

    Only connection failures are retried; reads, statuses and redirects are
    left to the caller.
    """
    session = requests.Session()
    # Headers come from the request interceptors, not from requests' defaults
    session.headers = CaseInsensitiveDict({'Connection': 'keep-alive'})
    retry_strategy = Retry(
        total=connect_retries,
        connect=connect_retries,
        read=False,
        redirect=False,
        status=0,
        backoff_factor=0.5,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=1, max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class PooledConnection:
    """A reusable connection owned by the pool"""

    def __init__(self, route: Route, session: requests.Session):
        self.route = route
        self.session = session
        self.created_at = time.monotonic()
        self.last_used = self.created_at
        self.expires_at: Optional[float] = None
        self.leased = False
        self.closed = False

    def keep_alive(self, seconds: Optional[float]) -> None:
        """Set how long the connection stays reusable; None means no expiry."""
        if seconds is None:
            self.expires_at = None
        else:
            self.expires_at = time.monotonic() + max(0.0, seconds)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.monotonic() if now is None else now
        return now >= self.expires_at

    def idle_for(self, now: Optional[float] = None) -> float:
        now = time.monotonic() if now is None else now
        return now - self.last_used

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.session.close()

    def __repr__(self) -> str:
        scheme, host, port = self.route
        state = "leased" if self.leased else ("closed" if self.closed else "idle")
        return f"<PooledConnection {scheme}://{host}:{port} {state}>"


class ConnectionPool:
    """Bounded pool of connections with a per-route and a global maximum"""

    def __init__(self, max_total: int = DEFAULT_MAX_TOTAL,
                 max_per_route: int = DEFAULT_MAX_PER_ROUTE,
                 acquire_timeout: float = 10.0,
                 idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
                 reaper_interval: float = DEFAULT_REAPER_INTERVAL,
                 session_factory: Callable[[], requests.Session] = None):
        if max_total < 1 or max_per_route < 1:
            raise ValueError("Pool limits must be at least 1")

        self.max_total = max_total
        self.max_per_route = max_per_route
        self.acquire_timeout = acquire_timeout
        self.idle_timeout = idle_timeout
        self.reaper_interval = reaper_interval
        self.session_factory = session_factory or create_session

        self._condition = threading.Condition()
        self._available: Dict[Route, List[PooledConnection]] = {}
        self._leased: Dict[Route, Set[PooledConnection]] = {}
        self._closed = False
        self._created = 0
        self._discarded = 0
        self.reaper: Optional[IdleConnectionReaper] = None
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings, connect_retries: int = 0) -> "ConnectionPool":
        """Build a pool from PoolSettings"""
        return cls(
            max_total=settings.max_total,
            max_per_route=settings.max_per_route,
            acquire_timeout=settings.acquire_timeout,
            idle_timeout=settings.idle_timeout,
            reaper_interval=settings.reaper_interval,
            session_factory=lambda: create_session(connect_retries),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "ConnectionPool":
        """Start the background reaper. Returns the pool for chaining."""
        with self._condition:
            self._ensure_open()
            if self.reaper is None:
                self.reaper = IdleConnectionReaper(self, self.reaper_interval, self.idle_timeout)
                self.reaper.start()
                self.logger.info(
                    f"Connection pool started (max_total={self.max_total}, "
                    f"max_per_route={self.max_per_route})"
                )
        return self

    def _ensure_open(self) -> None:
        if self._closed:
            raise PoolClosedError("Connection pool has been shut down")

    def _route_count(self, route: Route) -> int:
        return len(self._available.get(route, ())) + len(self._leased.get(route, ()))

    def _total_count(self) -> int:
        available = sum(len(conns) for conns in self._available.values())
        leased = sum(len(conns) for conns in self._leased.values())
        return available + leased

    def _discard(self, conn: PooledConnection) -> None:
        conn.close()
        self._discarded += 1

    def _take_available(self, route: Route) -> Optional[PooledConnection]:
        conns = self._available.get(route)
        now = time.monotonic()
        while conns:
            conn = conns.pop()  # most recently used first
            if conn.is_expired(now) or conn.closed:
                self._discard(conn)
                continue
            return conn
        return None

    def _evict_oldest_idle(self) -> bool:
        """Close the longest-idle available connection of any route."""
        oldest = None
        for conns in self._available.values():
            for conn in conns:
                if oldest is None or conn.last_used < oldest.last_used:
                    oldest = conn
        if oldest is None:
            return False
        self._available[oldest.route].remove(oldest)
        self._discard(oldest)
        return True

    def _create(self, route: Route) -> Optional[PooledConnection]:
        if self._route_count(route) >= self.max_per_route:
            return None
        if self._total_count() >= self.max_total and not self._evict_oldest_idle():
            return None
        self._created += 1
        return PooledConnection(route, self.session_factory())

    def acquire(self, route: Route, timeout: Optional[float] = None) -> PooledConnection:
        """
        Lease a connection for route, blocking while the route is at its limit.

        Args:
            route: (scheme, host, port) of the target
            timeout: Seconds to wait for a free slot; defaults to acquire_timeout

        Returns:
            A leased PooledConnection

        Raises:
            PoolExhaustedError: If no slot frees up before the timeout
            PoolClosedError: If the pool is (or gets) shut down
        """
        timeout = self.acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        with self._condition:
            while True:
                self._ensure_open()

                conn = self._take_available(route)
                if conn is None:
                    conn = self._create(route)

                if conn is not None:
                    conn.leased = True
                    self._leased.setdefault(route, set()).add(conn)
                    return conn

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    scheme, host, port = route
                    raise PoolExhaustedError(
                        f"Timed out after {timeout}s waiting for a connection to "
                        f"{scheme}://{host}:{port}"
                    )
                self._condition.wait(remaining)

    def release(self, conn: PooledConnection, reusable: bool = True) -> None:
        """
        Return a leased connection to the pool.

        Connections that failed, expired, or come back after shutdown are
        closed instead of kept.

        Raises:
            ValueError: If the connection is not currently leased
        """
        with self._condition:
            if not conn.leased:
                raise ValueError(f"{conn!r} is not leased from this pool")

            conn.leased = False
            self._leased.get(conn.route, set()).discard(conn)

            if self._closed or not reusable or conn.closed or conn.is_expired():
                self._discard(conn)
            else:
                conn.last_used = time.monotonic()
                self._available.setdefault(conn.route, []).append(conn)

            self._condition.notify_all()

    @contextmanager
    def connection(self, route: Route, timeout: Optional[float] = None) -> Iterator[PooledConnection]:
        """Lease a connection for the duration of a with-block; always released once."""
        conn = self.acquire(route, timeout)
        reusable = False
        try:
            yield conn
            reusable = True
        finally:
            self.release(conn, reusable=reusable)

    def close_expired(self) -> int:
        """Close idle connections whose keep-alive has run out."""
        with self._condition:
            self._ensure_open()
            now = time.monotonic()
            return self._close_available(lambda conn: conn.is_expired(now))

    def close_idle(self, older_than: float) -> int:
        """Close idle connections unused for more than older_than seconds."""
        with self._condition:
            self._ensure_open()
            now = time.monotonic()
            return self._close_available(lambda conn: conn.idle_for(now) > older_than)

    def _close_available(self, predicate) -> int:
        closed = 0
        for route, conns in list(self._available.items()):
            keep = []
            for conn in conns:
                if predicate(conn):
                    self._discard(conn)
                    closed += 1
                else:
                    keep.append(conn)
            if keep:
                self._available[route] = keep
            else:
                del self._available[route]
        if closed:
            self.logger.debug(f"Closed {closed} pooled connection(s)")
            self._condition.notify_all()
        return closed

    def shutdown(self) -> None:
        """
        Stop the reaper and close every idle connection.

        Leased connections are closed when their requests release them.
        Calling shutdown again is a no-op.
        """
        with self._condition:
            if self._closed:
                return
            self._closed = True
            idle = [conn for conns in self._available.values() for conn in conns]
            self._available.clear()
            for conn in idle:
                self._discard(conn)
            in_flight = sum(len(conns) for conns in self._leased.values())
            self._condition.notify_all()

        if self.reaper is not None:
            self.reaper.shutdown()

        self.logger.info(
            f"Connection pool shut down ({len(idle)} idle closed, {in_flight} in flight)"
        )

    def stats(self) -> dict:
        with self._condition:
            return {
                'available': sum(len(conns) for conns in self._available.values()),
                'leased': sum(len(conns) for conns in self._leased.values()),
                'routes': len(set(self._available) | {r for r, c in self._leased.items() if c}),
                'created': self._created,
                'discarded': self._discarded,
                'max_total': self.max_total,
                'max_per_route': self.max_per_route,
                'closed': self._closed,
            }

    def __enter__(self) -> "ConnectionPool":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


class IdleConnectionReaper(threading.Thread):
    """Background sweep closing expired and long-idle pooled connections"""

    def __init__(self, pool: ConnectionPool, interval: float = DEFAULT_REAPER_INTERVAL,
                 idle_timeout: float = DEFAULT_IDLE_TIMEOUT):
        super().__init__(name="idle-connection-reaper", daemon=True)
        self.pool = pool
        self.interval = interval
        self.idle_timeout = idle_timeout
        self.sweeps = 0
        self._wakeup = threading.Event()
        self._stopped = threading.Event()
        self.logger = logging.getLogger(__name__)

    def run(self) -> None:
        while not self._stopped.is_set():
            self._wakeup.wait(self.interval)
            self._wakeup.clear()
            if self._stopped.is_set():
                break
            try:
                expired = self.pool.close_expired()
                idle = self.pool.close_idle(self.idle_timeout)
            except PoolClosedError:
                break
            self.sweeps += 1
            if expired or idle:
                self.logger.debug(f"Reaper closed {expired} expired and {idle} idle connection(s)")

    def wake(self) -> None:
        """Run a sweep now instead of waiting for the interval."""
        self._wakeup.set()

    def shutdown(self, timeout: float = 5.0) -> None:
        self._stopped.set()
        self._wakeup.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()
