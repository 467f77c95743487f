from __future__ import annotations


class AccessProtectionError(Exception):
    """Base for every rejection the protection layer can produce.

    ``reason`` is what lands in the audit trail; it is never sent to API clients.
    """

    reason: str = "rejected"

    def __init__(self, reason: str | None = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class MalformedCredential(AccessProtectionError):
    reason = "invalid format"


class UnknownOrInactiveCredential(AccessProtectionError):
    reason = "key not found"


class ExpiredCredential(AccessProtectionError):
    reason = "expired"


class IPNotAllowlisted(AccessProtectionError):
    reason = "ip not allowlisted"


class RateLimitExceeded(AccessProtectionError):
    reason = "rate limit exceeded"


class StoreUnavailable(AccessProtectionError):
    reason = "store unavailable"


class Locked(AccessProtectionError):
    reason = "locked"

    def __init__(self, *, wait_time_seconds: int, message: str) -> None:
        self.wait_time_seconds = wait_time_seconds
        self.message = message
        super().__init__()


class Denylisted(AccessProtectionError):
    reason = "denylisted"

    def __init__(self, *, wait_time_seconds: int, message: str) -> None:
        self.wait_time_seconds = wait_time_seconds
        self.message = message
        super().__init__()
