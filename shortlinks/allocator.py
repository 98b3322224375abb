"""Short code allocation: random codes, custom aliases and sequential codes.

Flow Diagram — CodeAllocator.claim()
====================================
::
    ┌──────────────┐
    │ claim(alias, │
    │ insert)      │
    └──────┬───────┘
           ▼
    ┌──────────────┐   alias?   ┌──────────────┐
    │ allocate()   │──────────▶│ validate +   │── taken ──▶ AliasTaken
    └──────┬───────┘            │ exists check │
           │ no alias           └──────┬───────┘
           ▼                           │
    ┌──────────────┐  exists           │
    │ draw random  │─────────┐         │
    │ or next seq  │◀────────┘ (retry) │
    └──────┬───────┘                   │
           ▼                           ▼
    ┌──────────────────────────────────────┐
    │ insert(code)                         │
    │ CodeCollision → retry (or AliasTaken)│
    └──────────────────┬───────────────────┘
                       ▼
          attempts > CODE_MAX_ATTEMPTS → CodeSpaceExhausted

Key Behaviours
===============
- Random codes use nanoid, which draws from ``os.urandom``.
- The existence check is only a fast path; the unique constraint on insert is
  authoritative, so two racing allocations of the same code cannot both win.
- Retries are bounded and exhaustion fails loudly.
- ``encode_sequential`` is a pure base-62 encoder; ``RedisSequence`` feeds it a
  shared monotonically increasing counter.
"""

import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

import redis.asyncio as redis
from nanoid import generate

from shortlinks.enums import CodeStrategy
from shortlinks.exceptions import AliasTaken, CodeCollision, CodeSpaceExhausted, InvalidAlias

__all__ = [
    "ALPHABET",
    "CodeAllocator",
    "RedisSequence",
    "encode_sequential",
    "generate_short_code",
    "validate_alias",
]

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
DEFAULT_CODE_LENGTH = 7
SEQUENTIAL_MIN_WIDTH = 6
ALIAS_MIN_LENGTH = 3
ALIAS_MAX_LENGTH = 20
ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

T = TypeVar("T")


def generate_short_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


def encode_sequential(number: int, min_width: int = SEQUENTIAL_MIN_WIDTH) -> str:
    """Encode a non-negative integer in base 62, most significant digit first.

    The result is left-padded with ``ALPHABET[0]`` to ``min_width``::

        >>> encode_sequential(0)
        'AAAAAA'
        >>> encode_sequential(62)
        'AAAABA'
    """
    if number < 0:
        raise ValueError("Number must be non-negative")

    base = len(ALPHABET)
    digits: list[str] = []
    while number > 0:
        number, remainder = divmod(number, base)
        digits.append(ALPHABET[remainder])

    return "".join(reversed(digits)).rjust(min_width, ALPHABET[0])


def validate_alias(alias: str) -> str:
    if not ALIAS_MIN_LENGTH <= len(alias) <= ALIAS_MAX_LENGTH:
        raise InvalidAlias(
            f"Custom alias must be between {ALIAS_MIN_LENGTH} and {ALIAS_MAX_LENGTH} characters"
        )
    if not ALIAS_PATTERN.match(alias):
        raise InvalidAlias("Custom alias can only contain letters, numbers, hyphens, and underscores")
    return alias


class RedisSequence:
    """Monotonic counter shared by every instance through Redis INCR."""

    def __init__(self, cache: redis.Redis, key: str) -> None:
        self._cache = cache
        self._key = key

    async def next_value(self) -> int:
        return int(await self._cache.incr(self._key))


class CodeAllocator:
    def __init__(
        self,
        exists_by_code: Callable[[str], Awaitable[bool]],
        *,
        strategy: CodeStrategy = CodeStrategy.RANDOM,
        length: int = DEFAULT_CODE_LENGTH,
        min_width: int = SEQUENTIAL_MIN_WIDTH,
        max_attempts: int = 10,
        sequence: RedisSequence | None = None,
    ) -> None:
        assert max_attempts > 0, f"max_attempts must be positive, got {max_attempts!r}"
        if strategy is CodeStrategy.SEQUENTIAL and sequence is None:
            raise ValueError("Sequential strategy needs a sequence")
        self._exists = exists_by_code
        self._strategy = strategy
        self._length = length
        self._min_width = min_width
        self._max_attempts = max_attempts
        self._sequence = sequence

    async def allocate(self, requested_alias: str | None = None) -> str:
        if requested_alias:
            alias = validate_alias(requested_alias)
            if await self._exists(alias):
                raise AliasTaken(alias)
            return alias

        for _ in range(self._max_attempts):
            candidate = await self._draw()
            if not await self._exists(candidate):
                return candidate
        raise CodeSpaceExhausted(self._max_attempts)

    async def claim(self, requested_alias: str | None, insert: Callable[[str], Awaitable[T]]) -> T:
        """Allocate a code and hand it to ``insert``, retrying on insert-time collisions."""
        for _ in range(self._max_attempts):
            code = await self.allocate(requested_alias)
            try:
                return await insert(code)
            except CodeCollision:
                if requested_alias:
                    raise AliasTaken(requested_alias) from None
        raise CodeSpaceExhausted(self._max_attempts)

    async def _draw(self) -> str:
        if self._strategy is CodeStrategy.SEQUENTIAL:
            return encode_sequential(await self._sequence.next_value(), self._min_width)
        return generate_short_code(self._length)
