"""Staging -> result promotion.

promotion is read staged rows, copy them into canonical_result, delete the
staged copies. all three steps run in one transaction so a failure halfway
(say a result_key that already exists) leaves staging exactly as it was.

two callers promoting the same version at once would both read the same
staged rows, so promotion also holds a lock per metric_version_key for the
whole read-copy-delete - at most one promotion per version runs at a time.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from metricledger.errors import DuplicateKeyError, ForeignKeyError
from metricledger.executor.duckdb_executor import DuckDBExecutor
from metricledger.executor.schema import RESULT_COLUMNS, RESULT_TABLE, STAGING_TABLE
from metricledger.repository.results import RESULT_JSON_COLUMNS, ResultStore
from metricledger.repository.rows import encode_row, placeholders

logger = logging.getLogger(__name__)


class KeyedLock:
    """One lock per key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


class PromotionWorkflow:
    """Moves staged results for a metric version into the result store."""

    def __init__(self, executor: DuckDBExecutor, results: ResultStore) -> None:
        self.executor = executor
        self.results = results
        self._locks = KeyedLock()

    def promote(self, metric_version_key: str) -> int:
        """Promote every staged row for a version. Returns the number promoted.

        nothing staged is a no-op returning 0, so running it twice is safe.

        Raises:
            ValidationError: a staged row breaks the result invariants (only
                possible if something wrote to staging around the store).
            ForeignKeyError: the metric version no longer exists.
            DuplicateKeyError: a staged result_key is already finalized.
        """
        with self._locks.hold(metric_version_key), self.executor.transaction():
            staged = self.results.list_staging(metric_version_key)
            if not staged:
                logger.info("nothing staged for %s", metric_version_key)
                return 0

            if not self.results.catalog.version_exists(metric_version_key):
                raise ForeignKeyError(
                    f"Cannot promote results for unknown metric version {metric_version_key}",
                    key=metric_version_key,
                )

            keys = [row.result_key for row in staged]
            clashes = self.executor.fetch_all(
                f"SELECT result_key FROM {RESULT_TABLE} "
                f"WHERE result_key IN ({placeholders(len(keys))}) ORDER BY result_key",
                keys,
            )
            if clashes:
                clash_keys = [row["result_key"] for row in clashes]
                raise DuplicateKeyError(
                    f"Cannot promote {metric_version_key}: already finalized: "
                    f"{', '.join(clash_keys)}",
                    key=clash_keys[0],
                )

            rows = [
                encode_row(row.to_result().to_columns(), RESULT_JSON_COLUMNS) for row in staged
            ]
            self.executor.executemany(
                f"INSERT INTO {RESULT_TABLE} ({', '.join(RESULT_COLUMNS)}) "
                f"VALUES ({placeholders(len(RESULT_COLUMNS))})",
                [[row[column] for column in RESULT_COLUMNS] for row in rows],
            )
            self.executor.execute(
                f"DELETE FROM {STAGING_TABLE} WHERE metric_version_key = ?", [metric_version_key]
            )

        logger.info("promoted %d staging results for %s", len(staged), metric_version_key)
        return len(staged)

    def clear(self, metric_version_key: str | None = None) -> int:
        """Discard staged rows without promoting them.

        takes the same per-version lock so a clear can't interleave with a
        promotion of that version.
        """
        if metric_version_key is None:
            return self.results.clear_staging()
        with self._locks.hold(metric_version_key):
            return self.results.clear_staging(metric_version_key)
