"""
Error Taxonomy

Every failure the share/receive commands can report maps to one of these
classes. The CLI catches CursorKitError, prints its message and exits
non-zero; anything else is a bug and keeps its traceback.

- ConfigurationError: bad URL, bad port, bad option value (before any I/O)
- PortUnavailableError: no free port within the retry limit
- ArchiveBuildError: source enumeration/read failure while streaming
- InvalidArchiveError: missing/unparseable manifest, not a zip
- NetworkError: connection refused/reset/timeout/DNS, bad HTTP status
- ExtractionError: filesystem failure while writing received configs
- TunnelError: tunnel backend missing, misconfigured or failed to start
"""

from enum import Enum
from typing import Optional


class CursorKitError(Exception):
    """Base class for all expected, user-facing failures."""


class ConfigurationError(CursorKitError):
    """Invalid input detected before any network or filesystem I/O."""


class PortUnavailableError(CursorKitError):
    """Every port in the retry window was already in use."""

    def __init__(self, start_port: int, attempts: int):
        self.start_port = start_port
        self.attempts = attempts
        super().__init__(
            f"Could not find an available port after {attempts} attempts "
            f"(tried {start_port}-{start_port + attempts - 1})"
        )


class ArchiveBuildError(CursorKitError):
    """Archive generation failed part-way; the stream cannot be resumed."""


class InvalidArchiveError(CursorKitError):
    """The received archive is not a valid cursor-kit share."""


class NetworkErrorKind(Enum):
    """Human-readable categories for transport failures."""
    CONNECTION_REFUSED = "Connection refused. Make sure the share server is running."
    TIMED_OUT = "Connection timed out. Check the URL and network connection."
    HOST_NOT_FOUND = "Host not found. Check the URL and network connection."
    CONNECTION_RESET = "Connection was reset. The server may have closed unexpectedly."
    BAD_STATUS = "The share server returned an unexpected response."


class NetworkError(CursorKitError):
    """A transport failure, remapped to one of NetworkErrorKind."""

    def __init__(self, kind: NetworkErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        message = kind.value if not detail else f"{kind.value} ({detail})"
        super().__init__(message)


class ExtractionError(CursorKitError):
    """Writing received files failed; earlier writes are left in place."""

    def __init__(self, stage: str, path, cause: Exception):
        self.stage = stage
        self.path = path
        self.cause = cause
        super().__init__(f"Extraction failed while {stage} {path}: {cause}")


class TunnelError(CursorKitError):
    """A tunnel backend could not be started or is not usable."""
