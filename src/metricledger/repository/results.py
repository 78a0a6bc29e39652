"""Result and staging result storage.

canonical_result and canonical_staging_result share one layout, so one class
handles both. finalized results are write-once: there's no update or delete
here. corrections go in as a new row with a new calculation_version.
"""

import logging
from collections.abc import Collection, Iterable, Mapping
from typing import Any, TypeVar

from metricledger.config import MetadataPolicy
from metricledger.errors import DuplicateKeyError, ForeignKeyError, NotFoundError, ValidationError
from metricledger.executor.duckdb_executor import DuckDBExecutor
from metricledger.executor.schema import RESULT_TABLE, STAGING_TABLE
from metricledger.models.metric import MetricVersion
from metricledger.models.query import MetricSummary, ResultQuery
from metricledger.models.result import (
    Result,
    ResultBase,
    StagingResult,
    check_grain_dimension,
)
from metricledger.repository.catalog import MetricCatalog
from metricledger.repository.lineage import LineageStore
from metricledger.repository.rows import (
    coerce,
    decode_row,
    encode_row,
    insert_row,
    placeholders,
)

logger = logging.getLogger(__name__)

RESULT_JSON_COLUMNS = ("grain_keys", "result_value_json", "result_metadata")

# keys in metadata_schema that describe the schema itself rather than a metadata field
_SCHEMA_DIRECTIVES = frozenset({"required_fields", "optional_fields"})

_NEWEST_FIRST = "calculated_at DESC NULLS LAST, result_key"

RowT = TypeVar("RowT", bound=ResultBase)


def metadata_problems(record: ResultBase, version: MetricVersion) -> list[str]:
    """Check result_metadata against the version's metadata rules.

    the rules, as catalog authors write them:
      - required_metadata_fields and metadata_schema["required_fields"] name
        fields that must be present. a grain key counts as present - the
        calculation jobs usually put org/entity in the grain, not the metadata.
      - any other metadata_schema entry that is a list is the set of allowed
        values for that field (list-valued metadata may also be a subset).
    """
    metadata = record.result_metadata or {}
    schema = version.metadata_schema or {}
    problems = []

    required = list(version.required_metadata_fields)
    required += [f for f in schema.get("required_fields", []) if f not in required]
    present = set(metadata) | set(record.grain_keys)
    for field in required:
        if field not in present:
            problems.append(f"missing required metadata field '{field}'")

    for field, allowed in schema.items():
        if field in _SCHEMA_DIRECTIVES or not isinstance(allowed, list) or field not in metadata:
            continue
        value = metadata[field]
        if value in allowed:
            continue
        values = value if isinstance(value, list) else [value]
        unexpected = [v for v in values if v not in allowed]
        if unexpected:
            problems.append(f"metadata field '{field}' has unexpected value(s) {unexpected}")

    return problems


class ResultStore:
    """Store for finalized and staged results, plus the hierarchy queries."""

    def __init__(
        self,
        executor: DuckDBExecutor,
        catalog: MetricCatalog,
        lineage: LineageStore,
        metadata_policy: MetadataPolicy = MetadataPolicy.ADVISORY,
        latest_limit: int = 10,
    ) -> None:
        self.executor = executor
        self.catalog = catalog
        self.lineage = lineage
        self.metadata_policy = MetadataPolicy(metadata_policy)
        self.latest_limit = latest_limit

    # --- writes ---

    def insert_result(self, result: Result | Mapping[str, Any]) -> Result:
        """Insert a finalized result.

        normally results arrive through promotion - this is the direct path
        for bulk loads and backfills.

        Raises:
            ValidationError: not exactly one value populated, org_id missing,
                or (strict policy) metadata that fails the version's rules.
            ForeignKeyError: unknown metric_version_key.
            DuplicateKeyError: result_key already exists.
        """
        return self._insert(RESULT_TABLE, Result, result)

    def insert_results(self, results: Iterable[Result | Mapping[str, Any]]) -> int:
        """Insert many finalized results, all or nothing."""
        records = [coerce(Result, r) for r in results]
        with self.executor.transaction():
            for record in records:
                self._insert(RESULT_TABLE, Result, record)
        logger.info("bulk inserted %d results", len(records))
        return len(records)

    def insert_staging(self, result: StagingResult | Mapping[str, Any]) -> StagingResult:
        """Stage a computed result for later promotion. Same rules as insert_result."""
        return self._insert(STAGING_TABLE, StagingResult, result)

    def _insert(self, table: str, model: type[RowT], data: RowT | Mapping[str, Any]) -> RowT:
        record = coerce(model, data)

        with self.executor.transaction():
            version = self.catalog.get_version(record.metric_version_key)
            if version is None:
                raise ForeignKeyError(
                    f"Result {record.result_key} references unknown metric version "
                    f"{record.metric_version_key}",
                    key=record.metric_version_key,
                )
            if self._exists(table, record.result_key):
                raise DuplicateKeyError(
                    f"Result already exists in {table}: {record.result_key}",
                    key=record.result_key,
                )
            self._apply_metadata_policy(record, version)
            insert_row(self.executor, table, encode_row(record.to_columns(), RESULT_JSON_COLUMNS))

        logger.debug("inserted %s into %s", record.result_key, table)
        return record

    def _apply_metadata_policy(self, record: ResultBase, version: MetricVersion) -> None:
        if self.metadata_policy is MetadataPolicy.OFF:
            return
        problems = metadata_problems(record, version)
        if not problems:
            return
        if self.metadata_policy is MetadataPolicy.STRICT:
            raise ValidationError(
                f"Result {record.result_key} metadata rejected: {'; '.join(problems)}",
                key=record.result_key,
            )
        logger.warning(
            "result %s metadata doesn't match %s: %s",
            record.result_key,
            version.metric_version_key,
            "; ".join(problems),
        )

    # --- finalized reads ---

    def get_result(self, result_key: str) -> Result | None:
        row = self.executor.fetch_one(
            f"SELECT * FROM {RESULT_TABLE} WHERE result_key = ?", [result_key]
        )
        return self._from_row(Result, row) if row else None

    def query_results(self, query: ResultQuery | None = None, **filters: Any) -> list[Result]:
        """Results matching every provided filter, newest calculated first.

        accepts a ResultQuery or the same fields as keyword arguments.
        no filter at all returns the whole table.
        """
        query = query or coerce(ResultQuery, filters)
        clauses, params = self._filter_clauses(query)
        return self._select(RESULT_TABLE, Result, clauses, params, query.limit)

    def query_by_grain(self, grain_keys: Mapping[str, str]) -> list[Result]:
        """Results whose grain_keys match every entry in `grain_keys`.

        extra dimensions on the stored row are ignored, so {"org_id": "A"}
        matches a row with {"org_id": "A", "entity_id": "B", "month": "2024-01"}.
        """
        clauses, params = [], []
        for name, value in grain_keys.items():
            clauses.append(f"json_extract_string(grain_keys, '$.{check_grain_dimension(name)}') = ?")
            params.append(str(value))
        return self._select(RESULT_TABLE, Result, clauses, params)

    def latest_results(
        self,
        metric_version_key: str,
        org_id: str | None = None,
        entity_id: str | None = None,
        limit: int | None = None,
    ) -> list[Result]:
        """Newest results for a version - what the "current value" widgets show."""
        query = coerce(
            ResultQuery,
            {
                "metric_version_key": metric_version_key,
                "org_id": org_id,
                "entity_id": entity_id,
                "limit": self.latest_limit if limit is None else limit,
            },
        )
        return self.query_results(query)

    def get_hierarchy(self, metric_version_key: str) -> list[Result]:
        """Base results for a version plus everything one lineage edge away.

        only one hop - a parent's parent isn't included. use
        get_hierarchy_closure for the full graph.
        """
        base_keys = self._keys_for_version(metric_version_key)
        if not base_keys:
            return []
        related = set(base_keys)
        for edge in self.lineage.edges_touching(base_keys):
            related.add(edge.parent_result_key)
            related.add(edge.child_result_key)
        return self._results_by_keys(related)

    def get_hierarchy_closure(self, metric_version_key: str) -> list[Result]:
        """Base results plus every result reachable through lineage, either direction.

        breadth-first over the edge table; the visited set means a cycle in
        the lineage data just stops the walk instead of looping forever.
        """
        visited = set(self._keys_for_version(metric_version_key))
        frontier = set(visited)
        while frontier:
            discovered = set()
            for edge in self.lineage.edges_touching(frontier):
                discovered.add(edge.parent_result_key)
                discovered.add(edge.child_result_key)
            frontier = discovered - visited
            visited |= frontier
        return self._results_by_keys(visited)

    def metrics_summary(self, org_id: str) -> list[MetricSummary]:
        """Latest value of every active metric version for one organization."""
        summary = []
        for version in self.catalog.list_active_versions():
            latest = self.latest_results(version.metric_version_key, org_id=org_id, limit=1)
            summary.append(MetricSummary.from_latest(version, latest[0] if latest else None))
        return summary

    # --- staging ---

    def list_staging(
        self, metric_version_key: str | None = None, org_id: str | None = None
    ) -> list[StagingResult]:
        """Staged rows, optionally for one version and/or one organization."""
        query = coerce(ResultQuery, {"metric_version_key": metric_version_key, "org_id": org_id})
        clauses, params = self._filter_clauses(query)
        return self._select(STAGING_TABLE, StagingResult, clauses, params)

    def staging_count(self, metric_version_key: str | None = None) -> int:
        if metric_version_key is not None:
            return self.executor.fetch_value(
                f"SELECT COUNT(*) FROM {STAGING_TABLE} WHERE metric_version_key = ?",
                [metric_version_key],
            )
        return self.executor.fetch_value(f"SELECT COUNT(*) FROM {STAGING_TABLE}")

    def discard_staging(self, result_key: str) -> StagingResult:
        """Delete one staged row and return it.

        Raises:
            NotFoundError: if nothing is staged under that key.
        """
        with self.executor.transaction():
            row = self.executor.fetch_one(
                f"SELECT * FROM {STAGING_TABLE} WHERE result_key = ?", [result_key]
            )
            if row is None:
                raise NotFoundError(f"Staging result not found: {result_key}", key=result_key)
            self.executor.execute(f"DELETE FROM {STAGING_TABLE} WHERE result_key = ?", [result_key])
        logger.info("discarded staging result %s", result_key)
        return self._from_row(StagingResult, row)

    def clear_staging(self, metric_version_key: str | None = None) -> int:
        """Delete staged rows without promoting them. Returns how many went.

        used to throw away a bad calculation run. with no key (None), clears
        everything. an empty key is rejected rather than read as "all versions".

        Raises:
            ValidationError: metric_version_key is an empty string.
        """
        if metric_version_key == "":
            raise ValidationError('clear_staging needs a metric_version_key or None, not ""')
        with self.executor.transaction():
            count = self.staging_count(metric_version_key)
            if metric_version_key is not None:
                self.executor.execute(
                    f"DELETE FROM {STAGING_TABLE} WHERE metric_version_key = ?",
                    [metric_version_key],
                )
            else:
                self.executor.execute(f"DELETE FROM {STAGING_TABLE}")
        logger.info("cleared %d staging results (%s)", count, metric_version_key or "all versions")
        return count

    # --- helpers ---

    def _filter_clauses(self, query: ResultQuery) -> tuple[list[str], list[Any]]:
        clauses, params = [], []
        if query.org_id is not None:
            clauses.append("json_extract_string(grain_keys, '$.org_id') = ?")
            params.append(query.org_id)
        if query.entity_id is not None:
            clauses.append("json_extract_string(grain_keys, '$.entity_id') = ?")
            params.append(query.entity_id)
        if query.metric_version_key is not None:
            clauses.append("metric_version_key = ?")
            params.append(query.metric_version_key)
        return clauses, params

    def _select(
        self,
        table: str,
        model: type[RowT],
        clauses: list[str],
        params: list[Any],
        limit: int | None = None,
    ) -> list[RowT]:
        sql = f"SELECT * FROM {table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {_NEWEST_FIRST}"
        if limit:
            sql += f" LIMIT {int(limit)}"
        return [self._from_row(model, row) for row in self.executor.fetch_all(sql, params)]

    def _keys_for_version(self, metric_version_key: str) -> list[str]:
        rows = self.executor.fetch_all(
            f"SELECT result_key FROM {RESULT_TABLE} WHERE metric_version_key = ?",
            [metric_version_key],
        )
        return [row["result_key"] for row in rows]

    def _results_by_keys(self, result_keys: Collection[str]) -> list[Result]:
        if not result_keys:
            return []
        keys = sorted(result_keys)
        return self._select(
            RESULT_TABLE, Result, [f"result_key IN ({placeholders(len(keys))})"], keys
        )

    def _exists(self, table: str, result_key: str) -> bool:
        return bool(
            self.executor.fetch_value(
                f"SELECT COUNT(*) FROM {table} WHERE result_key = ?", [result_key]
            )
        )

    def _from_row(self, model: type[RowT], row: Mapping[str, Any]) -> RowT:
        # a corrupt row (e.g. written around this store) surfaces as ValidationError
        return coerce(model, decode_row(row, RESULT_JSON_COLUMNS), key=row.get("result_key"))
