"""Error taxonomy for pkgbroker.

Every error carries a machine-readable ``code``, a human message, the HTTP
status it maps to and optional response headers. The API layer renders all
of them as ``{"error", "message", "request_id"}`` bodies.
"""

from typing import Dict, Optional


class PkgBrokerError(Exception):
    """Base exception for pkgbroker."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.headers = headers or {}
        super().__init__(message)


class AuthError(PkgBrokerError):
    """Missing, invalid or expired credential."""

    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Authentication required", code: Optional[str] = None):
        super().__init__(
            message,
            code=code,
            headers={"WWW-Authenticate": 'Basic realm="pkgbroker"'},
        )


class RateLimitExceeded(PkgBrokerError):
    """Per-credential hourly ceiling reached."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, limit: int, retry_after: int):
        self.limit = limit
        self.retry_after = max(1, retry_after)
        super().__init__(
            f"Rate limit of {limit} requests per hour exceeded",
            headers={
                "Retry-After": str(self.retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )


class NotFoundError(PkgBrokerError):
    status_code = 404
    code = "not_found"


class ValidationError(PkgBrokerError):
    """Malformed sync configuration or request."""

    status_code = 400
    code = "validation_error"


class UnsupportedClientError(PkgBrokerError):
    status_code = 406
    code = "unsupported_client"


class UpstreamError(PkgBrokerError):
    """An origin or upstream source answered with an error or was unreachable."""

    status_code = 502
    code = "upstream_error"


class UpstreamSyncFailure(UpstreamError):
    """A repository synchronization failed.

    Recorded on the repository; only surfaced to callers of the
    on-demand sync trigger.
    """

    code = "sync_failed"


class StorageError(PkgBrokerError):
    """The object store could not be read or written."""

    status_code = 500
    code = "storage_error"


class CredentialDecryptionError(PkgBrokerError):
    """Stored repository credentials do not decrypt with the configured key."""

    status_code = 500
    code = "credentials_unreadable"


class CacheCorruption(PkgBrokerError):
    """A cached document did not have the expected shape.

    Never propagated: the cache heals the entry and reports a miss.
    """

    code = "cache_corruption"
