"""Exception hierarchy shared by the sync engine, remote client and stores.

Every error raised on purpose by this package derives from
:class:`LedgerSyncError` so callers can catch the whole family at once,
while the sync engine distinguishes the recoverable ones (remote and
storage failures) from precondition violations that must fail loudly.
"""

from __future__ import annotations

from enum import StrEnum


class LedgerSyncError(Exception):
    """Base class for all ledger-sync errors."""


class RemoteErrorCode(StrEnum):
    """Classification of a failed remote call."""

    AUTH = "auth"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    UNKNOWN = "unknown"


class RemoteError(LedgerSyncError):
    """A request against the remote store failed.

    Args:
        message: Human-readable description including the operation.
        code: The error classification.
        status: HTTP status code, when the failure came from a response.
    """

    def __init__(
        self,
        message: str,
        code: RemoteErrorCode = RemoteErrorCode.UNKNOWN,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class RemoteConflictError(RemoteError):
    """The branch moved since it was fetched; the push must be retried
    from a fresh fetch."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message, RemoteErrorCode.CONFLICT, status)


class PartitionFormatError(LedgerSyncError):
    """A remote partition file or ``settings.json`` could not be parsed."""


class StorageError(LedgerSyncError):
    """Reading or atomically replacing a local file failed."""


class MalformedRecordError(LedgerSyncError, ValueError):
    """A record handed to the merge engine violates its preconditions
    (missing id, missing timestamp, duplicate id within one replica)."""


class InvalidTransitionError(LedgerSyncError):
    """The sync state machine received an event its current state does
    not accept."""


_FRIENDLY_MESSAGES: dict[RemoteErrorCode, str] = {
    RemoteErrorCode.AUTH: "Authentication failed. Check your GitHub token.",
    RemoteErrorCode.PERMISSION: "The token lacks permission to write to this repository.",
    RemoteErrorCode.NOT_FOUND: "Repository or branch not found.",
    RemoteErrorCode.CONFLICT: "The remote changed during sync. Sync again to merge the new changes.",
    RemoteErrorCode.RATE_LIMIT: "GitHub rate limit exceeded. Try again later.",
    RemoteErrorCode.NETWORK: "Unable to connect. Check your internet connection.",
}


def describe_error(error: BaseException) -> str:
    """Return a short, user-facing description of *error*.

    Remote errors with a known code get a fixed message; anything else
    falls back to the exception text.
    """
    if isinstance(error, RemoteError) and error.code in _FRIENDLY_MESSAGES:
        return _FRIENDLY_MESSAGES[error.code]
    if isinstance(error, StorageError):
        return f"Unable to save data locally: {error}"
    return str(error) or error.__class__.__name__
