"""Access policy evaluated against every resolved link.

Checks run in a fixed order so combined failures are reported consistently:

1. deactivated  → ``LinkDeactivated`` (400)
2. expired      → ``LinkExpired`` (410)
3. password     → ``PasswordRequired`` / ``PasswordIncorrect`` (403)

The target address is returned untouched on success.
"""

import datetime
from collections.abc import Callable

import bcrypt

from shortlinks.exceptions import LinkDeactivated, LinkExpired, PasswordIncorrect, PasswordRequired
from shortlinks.schemas import CachedLink

__all__ = ["AccessGate", "hash_password", "verify_password"]


def hash_password(raw: str) -> str:
    return bcrypt.hashpw(raw.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(raw: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(raw.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash or over-long candidate
        return False


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AccessGate:
    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow) -> None:
        self._clock = clock

    def authorize(self, link: CachedLink, supplied_password: str | None = None) -> str:
        if not link.is_active:
            raise LinkDeactivated()

        if link.is_expired(self._clock()):
            raise LinkExpired()

        if link.is_password_protected:
            if not supplied_password:
                raise PasswordRequired()
            if not verify_password(supplied_password, link.password_hash):
                raise PasswordIncorrect()

        return link.original_url
