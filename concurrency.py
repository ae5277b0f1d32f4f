"""
Host Throttle Module

This module spaces requests to the same host by a minimum crawl delay so the
transport respects the remote site while other hosts proceed in parallel.
"""

import threading
import time
import logging
from typing import Dict


class HostThrottle:
    """Per-host crawl-delay enforcement shared by concurrent callers"""

    def __init__(self):
        self.host_locks: Dict[str, threading.Lock] = {}
        self.last_request_times: Dict[str, float] = {}
        self._lock = threading.Lock()  # guards host_locks and last_request_times
        self.logger = logging.getLogger(__name__)

    def _host_lock(self, host: str) -> threading.Lock:
        with self._lock:
            if host not in self.host_locks:
                self.host_locks[host] = threading.Lock()
            return self.host_locks[host]

    def record(self, host: str) -> None:
        """Note that a request to host is being issued now."""
        with self._lock:
            self.last_request_times[host] = time.monotonic()

    def seconds_until_ready(self, host: str, delay_ms: int) -> float:
        with self._lock:
            last = self.last_request_times.get(host)
        if last is None:
            return 0.0
        remaining = (delay_ms / 1000.0) - (time.monotonic() - last)
        return max(0.0, remaining)

    def wait(self, host: str, delay_ms: int) -> float:
        """
        Block until at least delay_ms has passed since the last request to host.

        Callers for the same host queue on a per-host lock, so concurrent hops
        to one host are spaced out one after another.

        Args:
            host: Host key (scheme://host[:port]) the next request goes to
            delay_ms: Minimum spacing in milliseconds

        Returns:
            Seconds spent sleeping
        """
        if delay_ms <= 0:
            self.record(host)
            return 0.0

        with self._host_lock(host):
            sleep_time = self.seconds_until_ready(host, delay_ms)
            if sleep_time > 0:
                self.logger.debug(f"Crawl delay: sleeping {sleep_time:.2f}s for host {host}")
                time.sleep(sleep_time)
            self.record(host)
            return sleep_time

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'hosts_tracked': len(self.last_request_times),
                'active_hosts': list(self.last_request_times.keys())
            }
