"""Shared test configuration and an in-memory stand-in for psycopg.

FakeStore simulates the handful of large-object statements the
uploader issues, with transactional visibility: objects created inside
a transaction only become visible to other connections on COMMIT and
vanish on ROLLBACK.  Failures can be injected per statement.
"""

from psycopg.pq import TransactionStatus
from pglo_upload.connection import _BaseAcquirer

import os
import psycopg
import pytest


# Allow DSN override via environment variable for CI.
# Default: local Docker on port 5433 (development setup).
DSN = os.environ.get(
    "PGLO_TEST_DSN",
    "dbname=pglo_test user=pglo password=pglo host=localhost port=5433",
)


class FakeCursor:
    def __init__(self, row=None):
        self._row = row

    def fetchone(self):
        return self._row


class FakeInfo:
    def __init__(self):
        self.transaction_status = TransactionStatus.IDLE


class FakeConnection:
    """Just enough of psycopg.Connection for LargeObjectSession."""

    def __init__(self, store):
        self._store = store
        self.info = FakeInfo()
        self.closed = False
        self.statements = []
        self._pending = {}
        self._fds = {}
        self._next_fd = 0

    # -- helpers ---------------------------------------------------------

    def _fail(self, message):
        if self.info.transaction_status == TransactionStatus.INTRANS:
            self.info.transaction_status = TransactionStatus.INERROR
        raise psycopg.OperationalError(message)

    def _visible(self, oid):
        return oid in self._pending or oid in self._store.objects

    def _end_transaction(self, keep):
        self._store.open_handles -= len(self._fds)
        if keep:
            self._store.objects.update(self._pending)
        self._pending = {}
        self._fds = {}
        self.info.transaction_status = TransactionStatus.IDLE

    # -- psycopg API -----------------------------------------------------

    def execute(self, sql, params=None):
        if self.closed:
            raise psycopg.OperationalError("the connection is closed")
        verb = sql.split("(")[0].replace("SELECT ", "").strip()
        self.statements.append((verb, params))
        self._store.calls.append(verb)
        if self.info.transaction_status == TransactionStatus.INERROR and verb not in (
            "ROLLBACK", "COMMIT",
        ):
            self._fail("current transaction is aborted")
        if self._store.should_fail(verb):
            self._fail(f"injected failure in {verb}")
        return getattr(self, "_do_" + verb)(params)

    def _do_BEGIN(self, params):
        self.info.transaction_status = TransactionStatus.INTRANS
        return FakeCursor()

    def _do_COMMIT(self, params):
        # PostgreSQL turns COMMIT of an aborted transaction into ROLLBACK
        self._end_transaction(
            keep=self.info.transaction_status == TransactionStatus.INTRANS
        )
        self._store.commits += 1
        return FakeCursor()

    def _do_ROLLBACK(self, params):
        self._end_transaction(keep=False)
        self._store.rollbacks += 1
        return FakeCursor()

    def _do_lo_create(self, params):
        oid = self._store.new_oid()
        self._pending[oid] = bytearray()
        return FakeCursor((oid,))

    def _do_lo_open(self, params):
        oid, mode = params
        if not self._visible(oid):
            self._fail(f"large object {oid} does not exist")
        fd = self._next_fd
        self._next_fd += 1
        self._fds[fd] = oid
        self._store.modes.append(mode)
        self._store.open_handles += 1
        return FakeCursor((fd,))

    def _do_lowrite(self, params):
        fd, data = params
        if fd not in self._fds:
            self._fail(f"invalid large-object descriptor: {fd}")
        oid = self._fds[fd]
        target = self._pending.get(oid)
        if target is None:
            target = self._pending[oid] = bytearray(self._store.objects[oid])
        target.extend(data)
        self._store.writes.append(bytes(data))
        return FakeCursor((self._store.short_write or len(data),))

    def _do_lo_close(self, params):
        (fd,) = params
        if self._fds.pop(fd, None) is None:
            self._fail(f"invalid large-object descriptor: {fd}")
        self._store.open_handles -= 1
        return FakeCursor((0,))

    def close(self):
        if self.closed:
            return
        if self.info.transaction_status != TransactionStatus.IDLE:
            # closing mid-transaction discards it, as the server does
            self._end_transaction(keep=False)
        self.closed = True
        self._store.closed += 1


class FakeStore:
    """Shared server state plus counters for assertions."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.writes = []
        self.modes = []
        self.commits = 0
        self.rollbacks = 0
        self.opened = 0
        self.closed = 0
        self.open_handles = 0
        self.short_write = None
        self._next_oid = 16384
        self._failures = {}

    def fail(self, verb, on_call=1):
        """Make the ``on_call``-th execution of ``verb`` raise."""
        self._failures[verb] = on_call

    def should_fail(self, verb):
        if verb not in self._failures:
            return False
        self._failures[verb] -= 1
        return self._failures[verb] == 0

    def new_oid(self):
        oid = self._next_oid
        self._next_oid += 1
        return oid

    def connect(self):
        self.opened += 1
        return FakeConnection(self)

    def count(self, verb):
        return self.calls.count(verb)

    @property
    def open_connections(self):
        return self.opened - self.closed


class FakeAcquirer(_BaseAcquirer):
    """Acquirer over a FakeStore, using the real scoped-release logic."""

    def __init__(self, store):
        self.store = store
        self.connections = []
        self.acquire_error = None
        self.release_error = None
        self.released = 0

    def _acquire(self):
        if self.acquire_error is not None:
            raise self.acquire_error
        conn = self.store.connect()
        self.connections.append(conn)
        return conn

    def _release(self, conn):
        self.released += 1
        conn.close()
        if self.release_error is not None:
            raise self.release_error


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def acquirer(store):
    return FakeAcquirer(store)


@pytest.fixture
def pg_dsn():
    """DSN of a reachable PostgreSQL server; skips the test otherwise."""
    try:
        conn = psycopg.connect(DSN, connect_timeout=2)
    except psycopg.Error as exc:
        pytest.skip(f"PostgreSQL not available: {exc}")
    conn.close()
    return DSN
