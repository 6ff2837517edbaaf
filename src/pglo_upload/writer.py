"""Chunked writer: drains a byte source into a large-object handle."""

import logging

from .errors import FileError
from .errors import UploadError
from .errors import WriteError


logger = logging.getLogger(__name__)

# 8 KiB matches the buffer of the original mobile clients; anything
# positive is correct, larger chunks just mean fewer round trips.
DEFAULT_CHUNK_SIZE = 8192


def write_all(handle, source, chunk_size=DEFAULT_CHUNK_SIZE):
    """Copy ``source`` into ``handle`` one chunk at a time.

    Reads at most ``chunk_size`` bytes, writes them, then reads the next
    chunk.  Stops at the first failure without retrying, closing the
    handle or touching the transaction; the caller must roll back.

    Returns the number of bytes written.  Raises WriteError (or
    FileError for a failing read) with ``offset`` set to the bytes
    written before the failure.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    offset = 0
    chunks = 0
    while True:
        try:
            chunk = source.read(chunk_size)
        except OSError as exc:
            raise FileError(
                f"Reading source failed at offset {offset}: {exc}", offset=offset
            ) from exc
        if chunk is None:
            raise FileError(
                f"Source has no data ready at offset {offset}", offset=offset
            )
        if not chunk:
            break
        try:
            handle.write(chunk)
        except UploadError as exc:
            raise WriteError(
                f"Write failed at offset {offset}: {exc.message}", offset=offset
            ) from exc
        offset += len(chunk)
        chunks += 1

    logger.debug("Wrote %d bytes in %d chunks", offset, chunks)
    return offset
