"""Metric catalog and metric version storage.

metrics and their versions live together here since versions can't exist
without their metric and every catalog screen shows both.
"""

import logging
from collections.abc import Mapping
from typing import Any

from metricledger.errors import DuplicateKeyError, ForeignKeyError, NotFoundError, ValidationError
from metricledger.executor.duckdb_executor import DuckDBExecutor
from metricledger.executor.schema import METRIC_TABLE, VERSION_TABLE
from metricledger.models.metric import (
    FROZEN_VERSION_FIELDS,
    ActiveMetricVersion,
    Metric,
    MetricUpdate,
    MetricVersion,
    MetricVersionUpdate,
)
from metricledger.repository.rows import coerce, decode_row, encode_row, insert_row, utcnow

logger = logging.getLogger(__name__)

METRIC_JSON_COLUMNS = ("tags",)
VERSION_JSON_COLUMNS = ("grain", "metadata_schema", "required_metadata_fields")

_VERSION_ORDER = "created_datetime DESC NULLS LAST, metric_version_key DESC"


class MetricCatalog:
    """Store for canonical_metric and canonical_metric_version rows."""

    def __init__(self, executor: DuckDBExecutor) -> None:
        self.executor = executor

    # --- metrics ---

    def list_metrics(self) -> list[Metric]:
        """All catalog entries, no filtering."""
        rows = self.executor.fetch_all(f"SELECT * FROM {METRIC_TABLE} ORDER BY metric_key")
        return [self._metric_from_row(row) for row in rows]

    def get_metric(self, metric_key: str) -> Metric | None:
        row = self.executor.fetch_one(
            f"SELECT * FROM {METRIC_TABLE} WHERE metric_key = ?", [metric_key]
        )
        return self._metric_from_row(row) if row else None

    def metric_exists(self, metric_key: str) -> bool:
        return bool(
            self.executor.fetch_value(
                f"SELECT COUNT(*) FROM {METRIC_TABLE} WHERE metric_key = ?", [metric_key]
            )
        )

    def create_metric(self, metric: Metric | Mapping[str, Any]) -> Metric:
        """Insert a new catalog entry.

        Raises:
            ValidationError: if the input doesn't describe a valid metric.
            DuplicateKeyError: if metric_key already exists.
        """
        metric = coerce(Metric, metric)
        with self.executor.transaction():
            if self.metric_exists(metric.metric_key):
                raise DuplicateKeyError(
                    f"Metric already exists: {metric.metric_key}", key=metric.metric_key
                )
            insert_row(
                self.executor, METRIC_TABLE, encode_row(metric.model_dump(), METRIC_JSON_COLUMNS)
            )
        logger.info("created metric %s", metric.metric_key)
        return metric

    def update_metric(self, metric_key: str, changes: MetricUpdate | Mapping[str, Any]) -> Metric:
        """Partially update name, description and/or tags.

        Raises:
            ValidationError: for unknown or immutable fields.
            NotFoundError: if the metric doesn't exist.
        """
        changes = coerce(MetricUpdate, changes, key=metric_key)
        fields = changes.model_dump(exclude_unset=True)

        with self.executor.transaction():
            current = self.get_metric(metric_key)
            if current is None:
                raise NotFoundError(f"Metric not found: {metric_key}", key=metric_key)
            # revalidate the merged record so e.g. an explicit null name is rejected
            updated = coerce(Metric, {**current.model_dump(), **fields}, key=metric_key)
            if fields:
                self._update_columns(
                    METRIC_TABLE,
                    "metric_key",
                    metric_key,
                    encode_row({f: getattr(updated, f) for f in fields}, METRIC_JSON_COLUMNS),
                )
        return updated

    # --- versions ---

    def list_versions(self, metric_key: str | None = None) -> list[MetricVersion]:
        """All versions, optionally for one metric, newest created first."""
        if metric_key:
            rows = self.executor.fetch_all(
                f"SELECT * FROM {VERSION_TABLE} WHERE metric_key = ? ORDER BY {_VERSION_ORDER}",
                [metric_key],
            )
        else:
            rows = self.executor.fetch_all(f"SELECT * FROM {VERSION_TABLE} ORDER BY {_VERSION_ORDER}")
        return [self._version_from_row(row) for row in rows]

    def get_version(self, metric_version_key: str) -> MetricVersion | None:
        row = self.executor.fetch_one(
            f"SELECT * FROM {VERSION_TABLE} WHERE metric_version_key = ?", [metric_version_key]
        )
        return self._version_from_row(row) if row else None

    def version_exists(self, metric_version_key: str) -> bool:
        return bool(
            self.executor.fetch_value(
                f"SELECT COUNT(*) FROM {VERSION_TABLE} WHERE metric_version_key = ?",
                [metric_version_key],
            )
        )

    def create_version(self, version: MetricVersion | Mapping[str, Any]) -> MetricVersion:
        """Insert a new metric version.

        version numbering is the caller's job - nothing checks that v2 comes
        after v1.

        Raises:
            ValidationError: if the input doesn't describe a valid version.
            ForeignKeyError: if the parent metric doesn't exist.
            DuplicateKeyError: if metric_version_key already exists.
        """
        version = coerce(MetricVersion, version)
        now = utcnow()
        version = version.model_copy(
            update={
                "created_datetime": version.created_datetime or now,
                "updated_datetime": version.updated_datetime or now,
            }
        )

        with self.executor.transaction():
            if not self.metric_exists(version.metric_key):
                raise ForeignKeyError(
                    f"Metric version {version.metric_version_key} references unknown "
                    f"metric {version.metric_key}",
                    key=version.metric_key,
                )
            if self.version_exists(version.metric_version_key):
                raise DuplicateKeyError(
                    f"Metric version already exists: {version.metric_version_key}",
                    key=version.metric_version_key,
                )
            insert_row(
                self.executor,
                VERSION_TABLE,
                encode_row(version.model_dump(), VERSION_JSON_COLUMNS),
            )
        logger.info(
            "created metric version %s (%s %s)",
            version.metric_version_key,
            version.metric_key,
            version.version_number,
        )
        return version

    def update_version(
        self, metric_version_key: str, changes: MetricVersionUpdate | Mapping[str, Any]
    ) -> MetricVersion:
        """Apply the explicitly provided fields and stamp updated_datetime.

        fields left out of `changes` are untouched - passing {"is_active": False}
        only flips the flag, it doesn't null out everything else.

        Raises:
            ValidationError: for frozen fields (grain, domain, result_type, keys)
                or invalid values.
            NotFoundError: if the version doesn't exist.
        """
        if isinstance(changes, Mapping):
            frozen = sorted(FROZEN_VERSION_FIELDS & set(changes))
            if frozen:
                raise ValidationError(
                    f"Cannot change {', '.join(frozen)} on an existing version - "
                    "author a new version instead",
                    key=metric_version_key,
                )
        changes = coerce(MetricVersionUpdate, changes, key=metric_version_key)
        fields = changes.model_dump(exclude_unset=True)

        with self.executor.transaction():
            current = self.get_version(metric_version_key)
            if current is None:
                raise NotFoundError(
                    f"Metric version not found: {metric_version_key}", key=metric_version_key
                )
            fields["updated_datetime"] = utcnow()
            updated = coerce(
                MetricVersion, {**current.model_dump(), **fields}, key=metric_version_key
            )
            self._update_columns(
                VERSION_TABLE,
                "metric_version_key",
                metric_version_key,
                encode_row({f: getattr(updated, f) for f in fields}, VERSION_JSON_COLUMNS),
            )
        logger.info("updated metric version %s: %s", metric_version_key, ", ".join(sorted(fields)))
        return updated

    def list_active_versions(self) -> list[ActiveMetricVersion]:
        """Active versions joined with their metric's name and tags, newest first."""
        rows = self.executor.fetch_all(
            f"""
            SELECT v.*, m.metric, m.tags
            FROM {VERSION_TABLE} v
            JOIN {METRIC_TABLE} m ON m.metric_key = v.metric_key
            WHERE v.is_active
            ORDER BY v.created_datetime DESC NULLS LAST, v.metric_version_key DESC
            """
        )
        return [self._version_from_row(row, ActiveMetricVersion) for row in rows]

    # --- helpers ---

    def _update_columns(
        self, table: str, key_column: str, key: str, values: Mapping[str, Any]
    ) -> None:
        assignments = ", ".join(f"{column} = ?" for column in values)
        self.executor.execute(
            f"UPDATE {table} SET {assignments} WHERE {key_column} = ?",
            [*values.values(), key],
        )

    def _metric_from_row(self, row: Mapping[str, Any]) -> Metric:
        data = decode_row(row, METRIC_JSON_COLUMNS)
        if data.get("tags") is None:
            data["tags"] = []
        return Metric.model_validate(data)

    def _version_from_row(
        self, row: Mapping[str, Any], model: type[MetricVersion] = MetricVersion
    ) -> MetricVersion:
        data = decode_row(row, VERSION_JSON_COLUMNS + METRIC_JSON_COLUMNS)
        if "tags" in data and data["tags"] is None:
            data["tags"] = []
        if data.get("required_metadata_fields") is None:
            data["required_metadata_fields"] = []
        if data.get("is_regulatory") is None:
            data["is_regulatory"] = False
        if data.get("is_active") is None:
            data["is_active"] = False
        return model.model_validate(data)
