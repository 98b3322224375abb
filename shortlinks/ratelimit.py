"""Per-client admission control with continuously refilling token buckets.

Bucket Layout
=============
::
    RateLimiters
    ├─ general   key=client ip   60/minute AND 1000/hour   (every request)
    ├─ redirect  key=client ip   100/10 seconds            (GET /r/{code})
    └─ strict    key=client ip   10/minute                 (link mutations)

    TokenBucket
    ├─ one token count per Bandwidth
    ├─ last refill timestamp (monotonic clock)
    └─ lock (refill + consume is one atomic step)

Refill Rule
===========
::
    tokens = min(capacity, tokens + elapsed * capacity / period)

Refill is computed lazily when a request arrives; there is no timer. A request
is admitted only when every bandwidth holds a whole token, and admission takes
one token from each of them.

How to Use
===========
**Step 1 — Build limiters from settings**::
    limiters = RateLimiters.from_settings(get_settings())

**Step 2 — Gate a request**::
    decision = limiters.general.try_acquire(resolve_client_ip(request))
    if not decision.allowed:
        raise RateLimitExceeded(decision.retry_after_seconds)

Key Behaviours
===============
- Token counts never go negative and never exceed capacity.
- ``retry_after_seconds`` is the whole number of seconds until every bandwidth
  has a token again (at least 1).
- A bucket that has refilled to capacity carries no state worth keeping, so
  such buckets are evicted first when the client map outgrows its bound, and a
  full map is trimmed to 90% of the bound so eviction runs once per batch.
- Client identity is X-Forwarded-For (first hop) > X-Real-IP > socket address,
  shared with click recording through ``resolve_client_ip``.
"""

import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from prometheus_client import Counter
from starlette.requests import Request

from shortlinks.config import Settings
from shortlinks.enums import BucketKind

__all__ = [
    "Admitted",
    "Bandwidth",
    "Decision",
    "Denied",
    "RateLimiter",
    "RateLimiters",
    "TokenBucket",
    "resolve_client_ip",
]

# share of max_clients left after a full registry is trimmed
EVICTION_TARGET_RATIO = 0.9

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "shortlinks_rate_limit_decisions_total",
    "Admission decisions by bucket family",
    ["bucket", "admitted"],
)


def resolve_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


@dataclass(frozen=True)
class Bandwidth:
    capacity: int
    period_seconds: float

    def __post_init__(self) -> None:
        assert self.capacity > 0, f"capacity must be positive, got {self.capacity!r}"
        assert self.period_seconds > 0, f"period must be positive, got {self.period_seconds!r}"


@dataclass(frozen=True)
class Admitted:
    remaining: int
    allowed: bool = True


@dataclass(frozen=True)
class Denied:
    retry_after_seconds: int
    allowed: bool = False


Decision = Admitted | Denied


class TokenBucket:
    def __init__(self, bandwidths: Sequence[Bandwidth], clock: Callable[[], float] = time.monotonic) -> None:
        assert bandwidths, "at least one bandwidth is required"
        self._bandwidths = tuple(bandwidths)
        self._clock = clock
        self._tokens = [float(b.capacity) for b in self._bandwidths]
        self._last_refill = clock()
        self._lock = threading.Lock()

    def try_consume(self, tokens: int = 1) -> Decision:
        with self._lock:
            self._refill(self._clock())

            if all(available >= tokens for available in self._tokens):
                self._tokens = [available - tokens for available in self._tokens]
                return Admitted(remaining=int(min(self._tokens)))

            wait = max(
                (tokens - available) * bandwidth.period_seconds / bandwidth.capacity
                for bandwidth, available in zip(self._bandwidths, self._tokens)
                if available < tokens
            )
            return Denied(retry_after_seconds=max(1, math.ceil(wait)))

    def is_full(self) -> bool:
        with self._lock:
            self._refill(self._clock())
            return all(
                available >= bandwidth.capacity
                for bandwidth, available in zip(self._bandwidths, self._tokens)
            )

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._tokens = [
            min(float(bandwidth.capacity), available + elapsed * bandwidth.capacity / bandwidth.period_seconds)
            for bandwidth, available in zip(self._bandwidths, self._tokens)
        ]
        self._last_refill = now


class RateLimiter:
    """Independent token buckets keyed by client."""

    def __init__(
        self,
        name: str,
        bandwidths: Sequence[Bandwidth],
        clock: Callable[[], float] = time.monotonic,
        max_clients: int = 50_000,
    ) -> None:
        self.name = name
        self._bandwidths = tuple(bandwidths)
        self._clock = clock
        self._max_clients = max_clients
        self._buckets: OrderedDict[str, TokenBucket] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def try_acquire(self, client_key: str) -> Decision:
        decision = self._bucket(client_key).try_consume(1)
        RATE_LIMIT_DECISIONS_TOTAL.labels(bucket=self.name, admitted=str(decision.allowed).lower()).inc()
        return decision

    def _bucket(self, client_key: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(client_key)
            if bucket is None:
                if len(self._buckets) >= self._max_clients:
                    self._evict(min(self._max_clients - 1, int(self._max_clients * EVICTION_TARGET_RATIO)))
                bucket = TokenBucket(self._bandwidths, self._clock)
                self._buckets[client_key] = bucket
            else:
                self._buckets.move_to_end(client_key)
            return bucket

    def _evict(self, target: int) -> None:
        for key in [key for key, bucket in self._buckets.items() if bucket.is_full()]:
            del self._buckets[key]
        while len(self._buckets) > target:
            self._buckets.popitem(last=False)


class RateLimiters:
    def __init__(self, general: RateLimiter, strict: RateLimiter, redirect: RateLimiter) -> None:
        self.general = general
        self.strict = strict
        self.redirect = redirect

    def __getitem__(self, kind: BucketKind) -> RateLimiter:
        return getattr(self, kind.value)

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> "RateLimiters":
        max_clients = settings.RATE_LIMIT_MAX_CLIENTS
        return cls(
            general=RateLimiter(
                BucketKind.GENERAL,
                [Bandwidth(settings.RATE_LIMIT_PER_MINUTE, 60), Bandwidth(settings.RATE_LIMIT_PER_HOUR, 3600)],
                clock,
                max_clients,
            ),
            strict=RateLimiter(
                BucketKind.STRICT,
                [Bandwidth(settings.STRICT_RATE_LIMIT, settings.STRICT_RATE_PERIOD_SECONDS)],
                clock,
                max_clients,
            ),
            redirect=RateLimiter(
                BucketKind.REDIRECT,
                [Bandwidth(settings.REDIRECT_RATE_LIMIT, settings.REDIRECT_RATE_PERIOD_SECONDS)],
                clock,
                max_clients,
            ),
        )
