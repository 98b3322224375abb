"""Domain errors raised on the redirect and allocation paths.

Each error carries the HTTP status and short error title it is rendered with,
so the exception handler in ``shortlinks.main`` needs no per-type branching.
"""

__all__ = [
    "ShortLinkError",
    "LinkNotFound",
    "LinkDeactivated",
    "LinkExpired",
    "PasswordRequired",
    "PasswordIncorrect",
    "AliasTaken",
    "InvalidAlias",
    "Forbidden",
    "RateLimitExceeded",
    "CodeSpaceExhausted",
    "CodeCollision",
]


class ShortLinkError(Exception):
    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class LinkNotFound(ShortLinkError):
    status_code = 404
    error = "Not Found"

    def __init__(self, short_code: str) -> None:
        super().__init__(f"Short link '{short_code}' not found")
        self.short_code = short_code


class LinkDeactivated(ShortLinkError):
    status_code = 400
    error = "Bad Request"

    def __init__(self) -> None:
        super().__init__("This link has been turned off")


class LinkExpired(ShortLinkError):
    status_code = 410
    error = "Gone"

    def __init__(self) -> None:
        super().__init__("This link has expired")


class PasswordRequired(ShortLinkError):
    status_code = 403
    error = "Forbidden"

    def __init__(self) -> None:
        super().__init__("Password required")


class PasswordIncorrect(ShortLinkError):
    status_code = 403
    error = "Forbidden"

    def __init__(self) -> None:
        super().__init__("Password incorrect")


class AliasTaken(ShortLinkError):
    status_code = 409
    error = "Conflict"

    def __init__(self, alias: str) -> None:
        super().__init__(f"Alias '{alias}' is already taken")
        self.alias = alias


class InvalidAlias(ShortLinkError):
    status_code = 400
    error = "Bad Request"


class Forbidden(ShortLinkError):
    status_code = 403
    error = "Forbidden"


class RateLimitExceeded(ShortLinkError):
    status_code = 429
    error = "Too Many Requests"

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"Rate limit exceeded. Please try again in {retry_after_seconds} seconds.")
        self.retry_after_seconds = retry_after_seconds


class CodeSpaceExhausted(ShortLinkError):
    status_code = 503
    error = "Service Unavailable"

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Could not allocate a free short code after {attempts} attempts")
        self.attempts = attempts


class CodeCollision(ShortLinkError):
    """Insert hit the unique constraint on short_code; callers retry with a new code."""

    status_code = 409
    error = "Conflict"

    def __init__(self, short_code: str) -> None:
        super().__init__(f"Short code '{short_code}' already exists")
        self.short_code = short_code
