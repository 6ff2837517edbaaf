"""Zope interface declarations for pglo-upload."""

from zope.interface import Attribute
from zope.interface import Interface


class IConnectionAcquirer(Interface):
    """Hands out store connections, one per upload."""

    def connection():
        """Context manager yielding a connection, released exactly once."""

    def close():
        """Release any resources held by the acquirer itself."""


class ILargeObjectHandle(Interface):
    """Write handle on one large object, valid between open and close."""

    oid = Attribute("Integer OID of the large object")
    valid = Attribute("False once closed or invalidated by rollback")

    def write(data):
        """Write bytes at the current position, returning the count."""


class ILargeObjectSession(Interface):
    """Sequenced large-object operations within one transaction."""

    state = Attribute("Current SessionState")

    def begin():
        """Start the transaction."""

    def allocate():
        """Create a new large object and return its OID."""

    def open_write(oid):
        """Open the allocated object write-only and return a handle."""

    def close_write(handle):
        """Close the handle returned by open_write."""

    def commit():
        """Commit.  Only valid once the handle has been closed."""

    def rollback():
        """Discard everything since begin.  Never raises."""


class IUploader(Interface):
    """Uploads local files into large objects."""

    def upload(request):
        """Run the full protocol for an UploadRequest, return an UploadResult."""

    def save_large_object(file_path):
        """Open file_path, upload it and return an UploadResult."""
