"""Lineage edges between finalized results.

an edge says "parent was derived (at least partly) from child". both ends
must be rows in canonical_result - staged rows can't have lineage because they
might never be promoted. cycles aren't prevented; they're a data-quality bug
in the calculation job, not something the model forbids.
"""

import logging
from collections.abc import Collection
from decimal import Decimal

from metricledger.errors import DuplicateKeyError, ForeignKeyError
from metricledger.executor.duckdb_executor import DuckDBExecutor
from metricledger.executor.schema import LINEAGE_TABLE, RESULT_TABLE
from metricledger.models.result import MetricLineage
from metricledger.repository.rows import coerce, insert_row, placeholders

logger = logging.getLogger(__name__)


class LineageStore:
    """Store for canonical_metric_lineage rows."""

    def __init__(self, executor: DuckDBExecutor) -> None:
        self.executor = executor

    def create_lineage(
        self,
        parent_result_key: str,
        child_result_key: str,
        contribution_weight: Decimal | float | str | None = None,
    ) -> MetricLineage:
        """Record that parent_result_key was derived from child_result_key.

        Raises:
            ValidationError: if the weight doesn't fit DECIMAL(5, 4).
            ForeignKeyError: if either key isn't a finalized result.
            DuplicateKeyError: if the edge already exists.
        """
        edge = coerce(
            MetricLineage,
            {
                "parent_result_key": parent_result_key,
                "child_result_key": child_result_key,
                "contribution_weight": contribution_weight,
            },
            key=f"{parent_result_key}->{child_result_key}",
        )

        with self.executor.transaction():
            missing = self._missing_results([edge.parent_result_key, edge.child_result_key])
            if missing:
                raise ForeignKeyError(
                    f"Lineage references unknown result(s): {', '.join(missing)}",
                    key=missing[0],
                )
            if self._edge_exists(edge.parent_result_key, edge.child_result_key):
                raise DuplicateKeyError(
                    f"Lineage already exists: {edge.parent_result_key} -> {edge.child_result_key}",
                    key=f"{edge.parent_result_key}->{edge.child_result_key}",
                )
            insert_row(self.executor, LINEAGE_TABLE, edge.model_dump())

        logger.info("created lineage %s -> %s", edge.parent_result_key, edge.child_result_key)
        return edge

    def query_lineage(
        self, parent_result_key: str | None = None, child_result_key: str | None = None
    ) -> list[MetricLineage]:
        """Edges matching either or both sides. No filter returns every edge."""
        clauses, params = [], []
        if parent_result_key:
            clauses.append("parent_result_key = ?")
            params.append(parent_result_key)
        if child_result_key:
            clauses.append("child_result_key = ?")
            params.append(child_result_key)

        sql = f"SELECT * FROM {LINEAGE_TABLE}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY parent_result_key, child_result_key"
        return [MetricLineage.model_validate(row) for row in self.executor.fetch_all(sql, params)]

    def edges_touching(self, result_keys: Collection[str]) -> list[MetricLineage]:
        """Edges where either end is one of result_keys."""
        if not result_keys:
            return []
        keys = list(result_keys)
        marks = placeholders(len(keys))
        rows = self.executor.fetch_all(
            f"""
            SELECT * FROM {LINEAGE_TABLE}
            WHERE parent_result_key IN ({marks}) OR child_result_key IN ({marks})
            """,
            keys + keys,
        )
        return [MetricLineage.model_validate(row) for row in rows]

    def _missing_results(self, keys: list[str]) -> list[str]:
        unique = list(dict.fromkeys(keys))
        rows = self.executor.fetch_all(
            f"SELECT result_key FROM {RESULT_TABLE} WHERE result_key IN ({placeholders(len(unique))})",
            unique,
        )
        found = {row["result_key"] for row in rows}
        return [key for key in unique if key not in found]

    def _edge_exists(self, parent_result_key: str, child_result_key: str) -> bool:
        return bool(
            self.executor.fetch_value(
                f"SELECT COUNT(*) FROM {LINEAGE_TABLE} "
                "WHERE parent_result_key = ? AND child_result_key = ?",
                [parent_result_key, child_result_key],
            )
        )
