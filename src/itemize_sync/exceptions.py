"""Exception types raised inside the sync subsystem.

Orchestrators convert these into queue transitions or result objects;
they never propagate out of ``start_sync`` or ``upload_or_queue``.
"""


class ItemizeSyncError(Exception):
    """Base class for all itemize-sync errors."""


class StorageError(ItemizeSyncError):
    """The underlying key-value backend failed to read or write."""


class NotAuthenticatedError(ItemizeSyncError):
    """No usable bearer credential could be obtained."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class ExtractionError(ItemizeSyncError):
    """The extraction endpoint rejected the upload or was unreachable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
