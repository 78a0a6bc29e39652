"""DuckDB executor for metricledger.

duckdb gives us a real relational engine (transactions, primary keys, json)
without running a database server. the in-memory mode is great for tests.

all access goes through one connection guarded by an RLock - a duckdb
connection isn't safe to share between threads, and a transaction has to own
the connection until it commits or rolls back.
"""

import logging
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import duckdb

from metricledger.errors import DuplicateKeyError, TransientInfrastructureError

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise duckdb errors as metricledger errors.

    constraint failures are almost always primary key collisions here, since
    that's the only constraint the schema declares besides NOT NULL.
    """
    try:
        yield
    except duckdb.ConstraintException as e:
        raise DuplicateKeyError(str(e)) from e
    except (duckdb.IOException, duckdb.ConnectionException) as e:
        raise TransientInfrastructureError(str(e)) from e


class DuckDBExecutor:
    """Execute statements against DuckDB.

    thin wrapper around duckdb that handles connection management, row to
    dict conversion and transactions. keeps the duckdb-specific bits isolated.
    """

    def __init__(self, database_path: str | None = None) -> None:
        """Initialize DuckDB connection.

        Args:
            database_path: Path to DuckDB file, or None for in-memory.
        """
        self.database_path = database_path
        self._conn: duckdb.DuckDBPyConnection | None = None  # lazy init
        self._lock = threading.RLock()
        self._in_transaction = False

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection.

        ":memory:" is the duckdb convention for in-memory database.
        """
        if self._conn is None:
            with translate_errors():
                self._conn = duckdb.connect(self.database_path or ":memory:")
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def fetch_all(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts."""
        with self._lock, translate_errors():
            start = time.perf_counter()
            result = self.conn.execute(sql, list(params or []))
            columns = [desc[0] for desc in result.description]
            rows = result.fetchall()
            elapsed_ms = (time.perf_counter() - start) * 1000

        logger.debug("query returned %d rows in %.2fms", len(rows), elapsed_ms)
        return [dict(zip(columns, row)) for row in rows]

    def fetch_one(self, sql: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_value(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """Return the first column of the first row, or None."""
        with self._lock, translate_errors():
            row = self.conn.execute(sql, list(params or [])).fetchone()
        return row[0] if row else None

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        """Run a statement that doesn't return rows we care about."""
        with self._lock, translate_errors():
            self.conn.execute(sql, list(params or []))

    def executemany(self, sql: str, rows: Sequence[Sequence[Any]]) -> None:
        with self._lock, translate_errors():
            self.conn.executemany(sql, [list(row) for row in rows])

    @contextmanager
    def transaction(self) -> Iterator["DuckDBExecutor"]:
        """Run the block in a single transaction.

        commits on success, rolls back on any exception and re-raises it.
        nested use joins the outer transaction - duckdb has no savepoints.
        """
        with self._lock:
            if self._in_transaction:
                yield self
                return

            with translate_errors():
                self.conn.begin()
            self._in_transaction = True
            try:
                yield self
            except BaseException:
                self._in_transaction = False
                self.conn.rollback()
                logger.warning("transaction rolled back")
                raise
            self._in_transaction = False
            with translate_errors():
                self.conn.commit()

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists.

        querying information_schema is the portable way to do this.
        """
        count = self.fetch_value(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
            [table_name],
        )
        return count > 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    # context manager support for clean resource management
    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
