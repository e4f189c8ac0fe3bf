"""Exception types shared by the packaging pipeline and the file API."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for fatal errors raised while building or publishing a release."""


class ConfigurationError(PipelineError):
    """Raised when a tag, product selector or setting is missing or invalid."""


class SourceTreeError(PipelineError):
    """Raised when the source checkout is missing or a required file is unreadable."""

    def __init__(self, message: str, *, path: object | None = None) -> None:
        super().__init__(message)
        self.path = path


class TransportError(PipelineError):
    """Raised when cloning the source repository or syncing to storage fails.

    Re-running the whole command is safe; the build directory is recreated
    and uploads are skipped when checksums already match.
    """


class AuthError(RuntimeError):
    """Raised when a request cannot be attributed to an authenticated subject."""

    status_code = 403


class MissingTokenError(AuthError):
    """Raised when no well-formed bearer token accompanies the request."""

    status_code = 401


class InvalidTokenError(AuthError):
    """Raised when a bearer token fails signature, issuer, audience or expiry checks."""

    status_code = 403


class KeySetUnavailableError(AuthError):
    """Raised when the issuer's signing keys cannot be fetched."""

    status_code = 503


class StorageError(RuntimeError):
    """Base class for key-value backend failures."""


class StorageUnavailableError(StorageError):
    """Raised when the key-value backend cannot serve a request."""


__all__ = [
    "AuthError",
    "ConfigurationError",
    "InvalidTokenError",
    "KeySetUnavailableError",
    "MissingTokenError",
    "PipelineError",
    "SourceTreeError",
    "StorageError",
    "StorageUnavailableError",
    "TransportError",
]
