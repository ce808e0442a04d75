"""Module implementing read-only handles on converted stores."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import duckdb
import pandas as pd

log = logging.getLogger("engine/handle")


class HandleError(RuntimeError):
    """Error emitted when we cannot open a usable handle on a store."""


class QueryError(RuntimeError):
    """Error emitted when a query cannot be built or executed."""


class QueryTimeoutError(QueryError):
    """Error emitted when a query exceeds its deadline."""


@dataclass(frozen=True, kw_only=True)
class HandleOptions:
    """
    Bounds of the per-dataset connection pool.

    Attributes:
        max_open: maximum number of cursors in use at the same time.
        max_idle: maximum number of idle cursors kept for reuse.
        max_lifetime: seconds after which a cursor is not reused.
    """

    max_open: int = 10
    max_idle: int = 5
    max_lifetime: float = 3600.0


@dataclass(kw_only=True)
class _PooledCursor:
    conn: duckdb.DuckDBPyConnection
    created: float


class DatasetHandle:
    """
    Read-only handle on the converted store of a dataset.

    The handle owns one DuckDB connection and hands out cursors (i.e.,
    duplicate connections safe to use from another thread) bounded by
    HandleOptions. Handles are opened once and reused by every query on
    the same dataset.
    """

    def __init__(
        self,
        dataset_id: str,
        path: Path,
        options: HandleOptions | None = None,
        *,
        _clock: Callable[[], float] = time.monotonic,  # used for testing
    ):
        """
        Open the store at path in read-only mode.

        Raises:
            HandleError: if DuckDB cannot open the store.
        """
        self.dataset_id = dataset_id
        self.path = path
        self.options = options if options is not None else HandleOptions()
        self._clock = _clock
        try:
            self._conn = duckdb.connect(str(path), read_only=True)
        except duckdb.Error as exc:
            raise HandleError(f"error opening store for {dataset_id}: {exc}") from exc
        self._slots = threading.BoundedSemaphore(self.options.max_open)
        self._idle: list[_PooledCursor] = []
        self._lock = threading.Lock()
        self._closed = False

    def ping(self) -> None:
        """
        Verify that the store answers queries.

        Raises:
            HandleError: if the store is not usable.
        """
        try:
            with self.cursor() as cur:
                cur.execute("SELECT 1").fetchone()
        except duckdb.Error as exc:
            raise HandleError(f"error pinging store for {self.dataset_id}: {exc}") from exc

    @contextmanager
    def cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Borrow a cursor, blocking while max_open cursors are in use."""
        self._slots.acquire()
        try:
            pooled = self._checkout()
            try:
                yield pooled.conn
            finally:
                self._checkin(pooled)
        finally:
            self._slots.release()

    def _checkout(self) -> _PooledCursor:
        with self._lock:
            if self._closed:
                raise HandleError(f"handle for {self.dataset_id} is closed")
            while self._idle:
                pooled = self._idle.pop()
                if self._clock() - pooled.created < self.options.max_lifetime:
                    return pooled
                pooled.conn.close()
            return _PooledCursor(conn=self._conn.cursor(), created=self._clock())

    def _checkin(self, pooled: _PooledCursor) -> None:
        with self._lock:
            expired = self._clock() - pooled.created >= self.options.max_lifetime
            if self._closed or expired or len(self._idle) >= self.options.max_idle:
                pooled.conn.close()
                return
            self._idle.append(pooled)

    def query(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        timeout: float | None = None,
    ) -> pd.DataFrame:
        """
        Run a parameterized query and return its result.

        Arguments:
            sql: the SQL text, using `?` placeholders.
            params: values bound to the placeholders.
            timeout: optional deadline in seconds after which we
                interrupt the query.

        Raises:
            QueryTimeoutError: if the deadline expires.
            QueryError: if DuckDB fails executing the query.
        """
        with self.cursor() as cur:
            timer = None
            if timeout is not None:
                timer = threading.Timer(timeout, cur.interrupt)
                timer.daemon = True
                timer.start()
            try:
                return cur.execute(sql, list(params)).df(date_as_object=True)
            except duckdb.InterruptException as exc:
                raise QueryTimeoutError(f"query on {self.dataset_id} exceeded {timeout}s") from exc
            except duckdb.Error as exc:
                raise QueryError(f"error executing query on {self.dataset_id}: {exc}") from exc
            finally:
                if timer is not None:
                    timer.cancel()

    def columns(self) -> list[tuple[str, str]]:
        """Return the (name, type) pairs of the `data` table."""
        df = self.query("SELECT name, type FROM pragma_table_info('data')")
        return [(str(name), str(kind)) for name, kind in zip(df["name"], df["type"])]

    def close(self) -> None:
        """Close every cursor and the underlying connection."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            idle, self._idle = self._idle, []
        for pooled in idle:
            pooled.conn.close()
        self._conn.close()
        log.debug("closed handle for %s", self.dataset_id)
