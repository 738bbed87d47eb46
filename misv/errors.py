"""
Error taxonomy for the mirror server.

Every failure that ends a request is a ``MirrorError``. Each subclass carries
the HTTP status the client receives and a short ``kind`` name that is logged
and echoed in the ``X-Misv-Error`` response header.
"""

from typing import Optional


class MirrorError(Exception):
    """Base class for errors that terminate a single request."""

    status = 500
    kind = "MirrorError"

    def __init__(self, message: str, path: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class InvalidPath(MirrorError):
    """The request path is malformed or would escape the cache root."""

    status = 400
    kind = "InvalidPath"


class CacheAccessError(MirrorError):
    """The filesystem refused a probe for a reason other than absence."""

    kind = "CacheAccessError"


class AmbiguousIndex(MirrorError):
    """An ``index.html`` inside the cache is a directory instead of a file."""

    kind = "AmbiguousIndex"


class OriginUnreachable(MirrorError):
    """The origin request could not be built or the transport failed."""

    status = 502
    kind = "OriginUnreachable"


class OriginError(MirrorError):
    """The origin answered with a non-2xx status or an unusable location."""

    status = 502
    kind = "OriginError"


class CacheDirError(MirrorError):
    kind = "CacheDirError"


class CacheCreateError(MirrorError):
    kind = "CacheCreateError"


class CacheWriteError(MirrorError):
    kind = "CacheWriteError"


class ConfigError(ValueError):
    """Startup configuration is unusable; fatal to the process."""
