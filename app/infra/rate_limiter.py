# app/infra/rate_limiter.py
"""
Per-client sliding-window rate limiting for the public job portal.

The portal is reachable by anyone holding a job link, so the job id is
the only secret.  Limiting requests per client IP keeps id guessing slow.
"""
from __future__ import annotations
import ipaddress
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Iterable, Optional

from fastapi import HTTPException, Request, status

from app.infra.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryRateLimiter:
    """
    Sliding window per key.

    Per-process only: with N replicas the effective limit is N x max_requests.
    """

    def __init__(self, max_requests: int, window_seconds: int = 60,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = Lock()
        self._last_cleanup = clock()

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._hits[key]
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def _drop_stale(self, now: float) -> int:
        # caller holds self._lock
        stale = [k for k in list(self._hits) if not self._prune(k, now)]
        for key in stale:
            del self._hits[key]
        self._last_cleanup = now
        return len(stale)

    def is_allowed(self, key: str) -> tuple[bool, Optional[int]]:
        """
        Record a hit for ``key`` if it is under the limit.

        Stale keys are swept once per window so idle clients do not pile up.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = self._clock()
        with self._lock:
            if now - self._last_cleanup >= self.window_seconds:
                self._drop_stale(now)

            hits = self._prune(key, now)
            if len(hits) >= self.max_requests:
                retry_after = int(hits[0] + self.window_seconds - now) + 1 if hits else self.window_seconds
                logger.warning(
                    "Portal rate limit exceeded",
                    extra={"client": _mask_ip(key), "count": len(hits), "limit": self.max_requests},
                )
                return False, retry_after

            hits.append(now)
            return True, None

    def remaining(self, key: str) -> int:
        with self._lock:
            return max(0, self.max_requests - len(self._prune(key, self._clock())))

    def cleanup(self) -> int:
        """Drop keys with no hits inside the window. Returns the number removed."""
        with self._lock:
            return self._drop_stale(self._clock())

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._hits)


def _mask_ip(ip: str) -> str:
    head, _, _ = ip.rpartition(".")
    return f"{head}.*" if head else "***"


def parse_trusted_proxies(entries: Iterable[str]) -> list:
    """IPs or CIDRs to networks; a bad entry raises ValueError at startup."""
    return [ipaddress.ip_network(entry.strip(), strict=False) for entry in entries if entry.strip()]


def _in_networks(host: str, networks: list) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(address in network for network in networks)


def client_ip(request: Request, trusted_networks: list = ()) -> str:
    """
    Address to rate-limit on.

    ``X-Forwarded-For`` is only read when the socket peer is a trusted proxy;
    the client is then the right-most hop that is not itself a trusted proxy.
    """
    peer = request.client.host if request.client else "unknown"
    networks = list(trusted_networks)
    if not networks or not _in_networks(peer, networks):
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For")
    if not forwarded_for:
        return peer
    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _in_networks(hop, networks):
            return hop
    return hops[0] if hops else peer


class RateLimitDependency:
    """FastAPI dependency: 429 with Retry-After once a client is over the limit."""

    def __init__(self, limiter: InMemoryRateLimiter, trusted_proxies: Iterable[str] = ()):
        self.limiter = limiter
        self.trusted_networks = parse_trusted_proxies(trusted_proxies)

    async def __call__(self, request: Request) -> None:
        allowed, retry_after = self.limiter.is_allowed(client_ip(request, self.trusted_networks))
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers={"Retry-After": str(retry_after)} if retry_after else None,
            )
