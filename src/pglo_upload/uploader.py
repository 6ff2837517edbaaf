"""Uploader — runs the full large-object upload protocol.

acquire connection -> BEGIN -> lo_create -> lo_open -> lowrite* ->
lo_close -> COMMIT -> release connection.

Any failure after the connection is acquired rolls the transaction back
before the connection is released, so an object is either committed
with all of its bytes or does not exist at all.  Every outcome is
reported as exactly one UploadSuccess or UploadFailure.
"""

import logging
import os
import stat
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import BinaryIO
from typing import Optional
from typing import Union

import zope.interface

from .errors import FileError
from .errors import UploadError
from .interfaces import IUploader
from .session import LargeObjectSession
from .writer import DEFAULT_CHUNK_SIZE
from .writer import write_all


logger = logging.getLogger(__name__)


@dataclass
class UploadRequest:
    """A readable binary source, borrowed for the duration of one upload.

    ``length`` is the expected number of bytes, or None when unknown.
    """

    source: BinaryIO
    length: Optional[int] = None


@dataclass(frozen=True)
class UploadSuccess:
    oid: str
    size: int = 0
    ok = True


@dataclass(frozen=True)
class UploadFailure:
    kind: str
    message: str
    offset: Optional[int] = None
    ok = False

    @classmethod
    def from_error(cls, error):
        return cls(kind=error.kind, message=error.message, offset=error.offset)


UploadResult = Union[UploadSuccess, UploadFailure]


def _future_result(future):
    if future.cancelled():
        return UploadFailure(
            kind="Cancelled", message="Upload was cancelled before it started"
        )
    try:
        return future.result()
    except BaseException as exc:
        return UploadFailure(kind="InternalError", message=repr(exc))


@zope.interface.implementer(IUploader)
class Uploader:
    """Uploads byte sources into large objects through an acquirer.

    The acquirer decides whether connections are ad-hoc or pooled; each
    upload holds its connection exclusively until it is finished.
    """

    def __init__(self, acquirer, chunk_size=DEFAULT_CHUNK_SIZE, name="pglo",
                 max_workers=4):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._acquirer = acquirer
        self.chunk_size = chunk_size
        self.name = name
        self._max_workers = max_workers
        self._executor = None
        self._executor_lock = threading.Lock()

    def upload(self, request):
        """Upload ``request.source`` and return an UploadResult.

        The source is borrowed, never closed here.  No exception derived
        from Exception escapes; anything else (KeyboardInterrupt, ...)
        still rolls back and releases before propagating.
        """
        try:
            with self._acquirer.connection() as conn:
                session = LargeObjectSession(conn)
                try:
                    oid, size = self._transfer(session, request)
                except BaseException:
                    session.rollback()
                    raise
        except UploadError as exc:
            logger.warning("Upload failed: %s: %s", exc.kind, exc.message)
            return UploadFailure.from_error(exc)
        except Exception as exc:
            logger.exception("Unexpected error during upload")
            return UploadFailure(kind="InternalError", message=str(exc))

        logger.info("Uploaded %d bytes as large object %d", size, oid)
        return UploadSuccess(oid=str(oid), size=size)

    def _transfer(self, session, request):
        session.begin()
        oid = session.allocate()
        handle = session.open_write(oid)
        size = write_all(handle, request.source, self.chunk_size)
        if request.length is not None and size != request.length:
            raise FileError(
                f"Source changed during upload: expected {request.length} "
                f"bytes, read {size}",
                offset=size,
            )
        session.close_write(handle)
        session.commit()
        return oid, size

    def save_large_object(self, file_path):
        """Upload the file at ``file_path``; the file is closed on every path."""
        if not file_path:
            return UploadFailure(kind=FileError.kind, message="File path is empty")
        try:
            f = open(file_path, "rb")
        except OSError as exc:
            logger.warning("Cannot open %s: %s", file_path, exc)
            return UploadFailure(
                kind=FileError.kind, message=f"Cannot open {file_path}: {exc}"
            )
        with f:
            try:
                st = os.fstat(f.fileno())
            except OSError:
                st = None
            # FIFOs and devices report st_size 0; their length is unknown
            length = None
            if st is not None and stat.S_ISREG(st.st_mode):
                length = st.st_size
            logger.debug("Uploading %s (%s bytes)", file_path, length)
            return self.upload(UploadRequest(f, length))

    def submit(self, file_path, callback=None):
        """Run save_large_object on a worker thread.

        Returns a Future resolving to the UploadResult.  ``callback`` is
        called once with the result, on the worker thread; hopping to
        another thread is up to the caller.  Cancelling the future after
        it started has no effect on the upload, which always reaches
        COMMIT or ROLLBACK before its connection is released.
        """
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix=f"{self.name}-upload",
                )
            future = self._executor.submit(self.save_large_object, file_path)
        if callback is not None:
            future.add_done_callback(lambda f: callback(_future_result(f)))
        return future

    def close(self):
        """Wait for pending uploads, then release the acquirer."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        self._acquirer.close()
