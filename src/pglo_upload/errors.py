"""Failure taxonomy for large-object uploads.

Every error carries a ``kind`` tag.  The orchestrator converts whatever
is raised inside an upload into exactly one ``UploadFailure`` using
that tag, so callers never see these exceptions directly.
"""


class UploadError(Exception):
    """Base class for all upload failures."""

    kind = "UploadError"

    def __init__(self, message, *, offset=None):
        super().__init__(message)
        self.message = message
        self.offset = offset


class StoreConnectionError(UploadError):
    """The store cannot be reached or rejected authentication."""

    kind = "ConnectionError"


class FileError(UploadError):
    """The local byte source could not be opened or read."""

    kind = "FileError"


class TransactionError(UploadError):
    """BEGIN failed or an operation ran outside an open transaction."""

    kind = "TransactionError"


class AllocationError(UploadError):
    """The store could not create a new large object."""

    kind = "AllocationError"


class HandleError(UploadError):
    """A large-object handle could not be opened, closed or used."""

    kind = "HandleError"


class WriteError(UploadError):
    """A chunk write failed.  ``offset`` is the byte count already written."""

    kind = "WriteError"


class CommitError(UploadError):
    """COMMIT failed, or was attempted before the object was written."""

    kind = "CommitError"


class ReleaseError(UploadError):
    """Returning a connection failed.  Logged only, never reported."""

    kind = "ReleaseError"
