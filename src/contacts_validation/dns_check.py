from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)

Resolver = Callable[[str, float], List[str]]


def resolve_mx_hosts(domain: str, timeout_seconds: float) -> List[str]:
    """Return MX exchange hosts for ``domain`` ordered by preference."""
    answers = dns.resolver.resolve(domain, "MX", lifetime=timeout_seconds)
    records = sorted(answers, key=lambda record: record.preference)
    return [str(record.exchange).rstrip(".") for record in records]


class MxChecker:
    """
    Caches MX presence per domain.

    ``has_mx`` answers True/False for a definitive DNS answer and None when
    the lookup itself failed, so callers can treat the domain as unknown.
    """

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        ttl_seconds: float = 3600.0,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.resolver = resolver or resolve_mx_hosts
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._cache: Dict[str, Tuple[float, bool]] = {}
        self._lock = threading.Lock()

    def _cached(self, domain: str) -> Optional[bool]:
        with self._lock:
            entry = self._cache.get(domain)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._cache[domain]
                return None
            return value

    def _lookup(self, domain: str) -> Optional[bool]:
        try:
            hosts = self.resolver(domain, self.timeout_seconds)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return False
        except (dns.exception.Timeout, dns.exception.DNSException, OSError) as exc:
            logger.warning("MX lookup for %s failed: %s", domain, exc)
            return None
        return bool(hosts)

    async def has_mx(self, domain: str) -> Optional[bool]:
        domain = (domain or "").strip().lower()
        if not domain:
            return False
        cached = self._cached(domain)
        if cached is not None:
            return cached
        result = await asyncio.to_thread(self._lookup, domain)
        if result is not None:
            with self._lock:
                self._cache[domain] = (self._clock(), result)
        return result

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
