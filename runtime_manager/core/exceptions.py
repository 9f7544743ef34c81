"""
Exception types for the runtime manager.

Version management errors are raised to callers. Session errors are only
used internally to build failure messages; the background session never
lets them escape.
"""
from typing import Optional


class RuntimeManagerError(Exception):
    """Base class for all runtime manager errors."""
    pass


class UnsupportedPlatformError(RuntimeManagerError):
    """The current OS/architecture has no published runtime binary."""
    pass


class NetworkError(RuntimeManagerError):
    """Non-2xx response or transport failure talking to the distribution server."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChecksumMismatchError(RuntimeManagerError):
    """A downloaded binary does not match its manifest checksum."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Checksum mismatch! Expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class VersionNotFoundError(RuntimeManagerError):
    """A version (or its manifest entry) is unknown."""
    pass


class BundledVersionUnavailableError(VersionNotFoundError):
    """The bundled binary is missing or its version cannot be determined."""
    pass


class MissingBinaryError(RuntimeManagerError):
    """A registry row points at a binary that is no longer on disk."""
    pass


class ProtectedVersionError(RuntimeManagerError):
    """Attempt to delete the active or the bundled version."""
    pass


class DownloadCancelledError(RuntimeManagerError):
    """A download was cancelled through its cancellation token."""
    pass


class SessionNotReadyError(RuntimeManagerError):
    """The background session is not in the ready state."""
    pass


class SessionInitError(RuntimeManagerError):
    """The background session failed to start."""
    pass


class QueryFailedError(RuntimeManagerError):
    """A query against the background session failed."""
    pass


class QueryCancelledError(QueryFailedError):
    """A runtime invocation was cancelled through its cancellation token."""
    pass


class CredentialDecryptionError(RuntimeManagerError):
    """A stored credential cannot be decrypted with the current key."""
    pass
