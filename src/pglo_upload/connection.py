"""Connection acquirers: ad-hoc and pooled psycopg connections."""

import logging
from contextlib import contextmanager

import psycopg
import zope.interface
from psycopg_pool import ConnectionPool
from psycopg_pool import PoolTimeout

from .config import mask_dsn
from .errors import ReleaseError
from .errors import StoreConnectionError
from .interfaces import IConnectionAcquirer


logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10


class _BaseAcquirer:
    """Scoped acquisition: every acquired connection is released once."""

    def _acquire(self):
        raise NotImplementedError

    def _release(self, conn):
        raise NotImplementedError

    @contextmanager
    def connection(self):
        conn = self._acquire()
        try:
            yield conn
        finally:
            try:
                self._release(conn)
            except Exception as exc:
                error = ReleaseError(f"Failed to release connection: {exc}")
                logger.exception("%s (%s)", error.kind, error.message)

    def close(self):
        """Nothing to release by default."""


@zope.interface.implementer(IConnectionAcquirer)
class ConnectionAcquirer(_BaseAcquirer):
    """Opens a fresh autocommit connection per upload and closes it after."""

    def __init__(self, dsn, connect_timeout=DEFAULT_CONNECT_TIMEOUT):
        self._dsn = dsn
        self._connect_timeout = connect_timeout

    def _acquire(self):
        logger.debug("Connecting to PostgreSQL: %s", mask_dsn(self._dsn))
        try:
            conn = psycopg.connect(
                self._dsn,
                autocommit=True,
                connect_timeout=self._connect_timeout,
            )
        except psycopg.Error as exc:
            raise StoreConnectionError(
                f"Cannot connect to {mask_dsn(self._dsn)}: {exc}"
            ) from exc
        logger.debug("Connected to PostgreSQL")
        return conn

    def _release(self, conn):
        if not conn.closed:
            conn.close()
        logger.debug("Connection closed")


@zope.interface.implementer(IConnectionAcquirer)
class PooledConnectionAcquirer(_BaseAcquirer):
    """Borrows autocommit connections from a psycopg_pool ConnectionPool.

    The pool discards connections returned in a broken or in-transaction
    state, so a failed rollback never leaks into the next upload.
    """

    def __init__(self, dsn, min_size=1, max_size=10, timeout=30.0,
                 connect_timeout=DEFAULT_CONNECT_TIMEOUT):
        self._dsn = dsn
        self._timeout = timeout
        logger.debug(
            "Creating connection pool (min=%d, max=%d) for %s",
            min_size, max_size, mask_dsn(dsn),
        )
        self._pool = ConnectionPool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout,
            kwargs={"connect_timeout": connect_timeout},
            configure=lambda conn: setattr(conn, "autocommit", True),
            open=True,
        )
        logger.debug("Connection pool ready")

    def _acquire(self):
        try:
            return self._pool.getconn(timeout=self._timeout)
        except (PoolTimeout, psycopg.Error) as exc:
            raise StoreConnectionError(
                f"No connection available for {mask_dsn(self._dsn)}: {exc}"
            ) from exc

    def _release(self, conn):
        self._pool.putconn(conn)

    def close(self):
        self._pool.close()
