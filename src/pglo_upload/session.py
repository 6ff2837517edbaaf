"""LargeObjectSession: one large object inside one explicit transaction.

The connection must be in autocommit mode: transaction boundaries are
issued as BEGIN/COMMIT/ROLLBACK statements so the session always knows
exactly which state the server side is in.

State machine::

    IDLE -> TRANSACTION_OPEN -> OBJECT_ALLOCATED -> HANDLE_OPEN
         -> HANDLE_CLOSED -> COMMITTED

ROLLED_BACK is reachable from every non-terminal state.  Committing is
only allowed from HANDLE_CLOSED, so an allocated but unwritten object
can never be committed by accident.
"""

import logging
from enum import Enum

import psycopg
import zope.interface
from psycopg.pq import TransactionStatus

from .errors import AllocationError
from .errors import CommitError
from .errors import HandleError
from .errors import TransactionError
from .errors import WriteError
from .interfaces import ILargeObjectHandle
from .interfaces import ILargeObjectSession


logger = logging.getLogger(__name__)

# libpq open mode flags (libpq-fs.h).  Uploads only ever need write access.
INV_WRITE = 0x00020000


class SessionState(Enum):
    IDLE = "idle"
    TRANSACTION_OPEN = "transaction-open"
    OBJECT_ALLOCATED = "object-allocated"
    HANDLE_OPEN = "handle-open"
    HANDLE_CLOSED = "handle-closed"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


TERMINAL_STATES = frozenset({SessionState.COMMITTED, SessionState.ROLLED_BACK})


@zope.interface.implementer(ILargeObjectHandle)
class LargeObjectHandle:
    """Server-side large-object descriptor opened for writing."""

    def __init__(self, conn, oid, fd):
        self._conn = conn
        self.oid = oid
        self.fd = fd
        self.valid = True

    def write(self, data):
        """Write ``data`` at the current position.

        Raises WriteError if the store fails or acknowledges fewer bytes
        than were sent.  The offset is left for the caller to fill in.
        """
        if not self.valid:
            raise HandleError(f"Handle for large object {self.oid} is closed")
        try:
            row = self._conn.execute(
                "SELECT lowrite(%s::integer, %s)", (self.fd, bytes(data))
            ).fetchone()
        except psycopg.Error as exc:
            raise WriteError(f"lowrite failed on large object {self.oid}: {exc}") from exc
        written = row[0]
        if written != len(data):
            raise WriteError(
                f"Short write on large object {self.oid}: "
                f"{written} of {len(data)} bytes"
            )
        return written

    def invalidate(self):
        self.valid = False

    def __repr__(self):
        state = "open" if self.valid else "closed"
        return f"<LargeObjectHandle oid={self.oid} fd={self.fd} {state}>"


@zope.interface.implementer(ILargeObjectSession)
class LargeObjectSession:
    """Drives begin/allocate/open/close/commit on a single connection.

    One session per upload; sessions are not reusable once they reach
    COMMITTED or ROLLED_BACK.
    """

    def __init__(self, conn):
        self._conn = conn
        self.state = SessionState.IDLE
        self.oid = None
        self._handle = None

    def _require(self, state, error_cls, action):
        if self.state is not state:
            raise error_cls(
                f"Cannot {action} in state {self.state.value} "
                f"(requires {state.value})"
            )

    def _scalar(self, sql, params, error_cls, action):
        try:
            row = self._conn.execute(sql, params).fetchone()
        except psycopg.Error as exc:
            raise error_cls(f"{action} failed: {exc}") from exc
        if row is None or row[0] is None:
            raise error_cls(f"{action} returned no result")
        return row[0]

    def begin(self):
        self._require(SessionState.IDLE, TransactionError, "begin")
        status = self._conn.info.transaction_status
        if status != TransactionStatus.IDLE:
            raise TransactionError(
                f"Connection is already in a transaction ({status.name})"
            )
        try:
            self._conn.execute("BEGIN")
        except psycopg.Error as exc:
            raise TransactionError(f"BEGIN failed: {exc}") from exc
        self.state = SessionState.TRANSACTION_OPEN
        logger.debug("Transaction started")

    def allocate(self):
        """Create an empty large object and return its OID."""
        self._require(SessionState.TRANSACTION_OPEN, TransactionError, "allocate")
        oid = self._scalar(
            "SELECT lo_create(0)", None, AllocationError, "lo_create"
        )
        self.oid = oid
        self.state = SessionState.OBJECT_ALLOCATED
        logger.debug("Allocated large object %d", oid)
        return oid

    def open_write(self, oid):
        """Open ``oid`` write-only and return a LargeObjectHandle."""
        self._require(SessionState.OBJECT_ALLOCATED, HandleError, "open handle")
        if oid != self.oid:
            raise HandleError(
                f"Large object {oid} was not allocated by this session"
            )
        fd = self._scalar(
            "SELECT lo_open(%s::oid, %s::integer)",
            (oid, INV_WRITE),
            HandleError,
            "lo_open",
        )
        if fd < 0:
            raise HandleError(f"lo_open returned invalid descriptor {fd}")
        self._handle = LargeObjectHandle(self._conn, oid, fd)
        self.state = SessionState.HANDLE_OPEN
        logger.debug("Opened large object %d for writing (fd=%d)", oid, fd)
        return self._handle

    def close_write(self, handle):
        self._require(SessionState.HANDLE_OPEN, HandleError, "close handle")
        if handle is not self._handle or not handle.valid:
            raise HandleError(f"{handle!r} is not the open handle of this session")
        try:
            self._conn.execute("SELECT lo_close(%s::integer)", (handle.fd,))
        except psycopg.Error as exc:
            raise HandleError(f"lo_close failed: {exc}") from exc
        finally:
            handle.invalidate()
            self._handle = None
        self.state = SessionState.HANDLE_CLOSED
        logger.debug("Closed large object %d", handle.oid)

    def commit(self):
        self._require(SessionState.HANDLE_CLOSED, CommitError, "commit")
        try:
            self._conn.execute("COMMIT")
        except psycopg.Error as exc:
            raise CommitError(f"COMMIT failed: {exc}") from exc
        self.state = SessionState.COMMITTED
        logger.debug("Committed large object %d", self.oid)

    def rollback(self):
        """Abort the transaction.  Best-effort: errors are logged, not raised.

        The server closes every large-object descriptor on abort, so the
        handle is invalidated without issuing lo_close.
        """
        if self.state in TERMINAL_STATES:
            return
        if self._handle is not None:
            self._handle.invalidate()
            self._handle = None
        self.state = SessionState.ROLLED_BACK
        if self._conn.closed:
            return
        if self._conn.info.transaction_status == TransactionStatus.IDLE:
            return
        try:
            self._conn.execute("ROLLBACK")
        except psycopg.Error:
            logger.exception("Error during rollback")
            return
        logger.debug("Rolled back large object %s", self.oid)
