"""Main CanonicalMetricStore interface for metricledger."""

import logging
from collections.abc import Mapping
from typing import Any

from metricledger.config import Settings
from metricledger.executor.duckdb_executor import DuckDBExecutor
from metricledger.executor.schema import create_schema
from metricledger.models.metric import ActiveMetricVersion, Metric, MetricVersion
from metricledger.models.query import MetricSummary
from metricledger.models.result import MetricLineage, Result, StagingResult
from metricledger.promotion import PromotionWorkflow
from metricledger.repository.catalog import MetricCatalog
from metricledger.repository.lineage import LineageStore
from metricledger.repository.results import ResultStore

logger = logging.getLogger(__name__)


class CanonicalMetricStore:
    """Main interface for metricledger.

    wires the individual stores to one executor. build one of these at
    startup and hand it to whatever needs it - there's no global instance.
    the sub-stores are public (store.catalog, store.results, ...) and the
    methods below are shortcuts for the common calls.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        executor: DuckDBExecutor | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            settings: Runtime settings. Defaults to Settings() from the environment.
            executor: Executor to use, e.g. a shared in-memory one in tests.
                Defaults to one opened on settings.database_path.
        """
        self.settings = settings or Settings()
        self.executor = executor or DuckDBExecutor(self.settings.database_path)

        self.catalog = MetricCatalog(self.executor)
        self.lineage = LineageStore(self.executor)
        self.results = ResultStore(
            self.executor,
            self.catalog,
            self.lineage,
            metadata_policy=self.settings.metadata_policy,
            latest_limit=self.settings.latest_limit,
        )
        self.promotion = PromotionWorkflow(self.executor, self.results)

    def init_schema(self) -> "CanonicalMetricStore":
        """Create the canonical tables if they don't exist yet."""
        create_schema(self.executor)
        logger.debug("schema ready at %s", self.executor.database_path or ":memory:")
        return self

    # --- catalog ---

    def list_metrics(self) -> list[Metric]:
        return self.catalog.list_metrics()

    def create_metric(self, metric: Metric | Mapping[str, Any]) -> Metric:
        return self.catalog.create_metric(metric)

    def update_metric(self, metric_key: str, changes: Mapping[str, Any]) -> Metric:
        return self.catalog.update_metric(metric_key, changes)

    def list_versions(self, metric_key: str | None = None) -> list[MetricVersion]:
        return self.catalog.list_versions(metric_key)

    def create_version(self, version: MetricVersion | Mapping[str, Any]) -> MetricVersion:
        return self.catalog.create_version(version)

    def update_version(self, metric_version_key: str, changes: Mapping[str, Any]) -> MetricVersion:
        return self.catalog.update_version(metric_version_key, changes)

    def list_active_versions(self) -> list[ActiveMetricVersion]:
        return self.catalog.list_active_versions()

    # --- results ---

    def insert_result(self, result: Result | Mapping[str, Any]) -> Result:
        return self.results.insert_result(result)

    def query_results(
        self,
        org_id: str | None = None,
        entity_id: str | None = None,
        metric_version_key: str | None = None,
    ) -> list[Result]:
        return self.results.query_results(
            org_id=org_id, entity_id=entity_id, metric_version_key=metric_version_key
        )

    def query_by_grain(self, grain_keys: Mapping[str, str]) -> list[Result]:
        return self.results.query_by_grain(grain_keys)

    def latest_results(
        self,
        metric_version_key: str,
        org_id: str | None = None,
        entity_id: str | None = None,
        limit: int | None = None,
    ) -> list[Result]:
        return self.results.latest_results(metric_version_key, org_id, entity_id, limit)

    def get_hierarchy(self, metric_version_key: str, closure: bool = False) -> list[Result]:
        """One-hop hierarchy by default; closure=True walks the whole lineage graph."""
        if closure:
            return self.results.get_hierarchy_closure(metric_version_key)
        return self.results.get_hierarchy(metric_version_key)

    def metrics_summary(self, org_id: str) -> list[MetricSummary]:
        return self.results.metrics_summary(org_id)

    # --- staging ---

    def insert_staging(self, result: StagingResult | Mapping[str, Any]) -> StagingResult:
        return self.results.insert_staging(result)

    def list_staging(
        self, metric_version_key: str | None = None, org_id: str | None = None
    ) -> list[StagingResult]:
        return self.results.list_staging(metric_version_key, org_id)

    def promote(self, metric_version_key: str) -> int:
        return self.promotion.promote(metric_version_key)

    def clear_staging(self, metric_version_key: str | None = None) -> int:
        return self.promotion.clear(metric_version_key)

    # --- lineage ---

    def create_lineage(
        self,
        parent_result_key: str,
        child_result_key: str,
        contribution_weight: Any = None,
    ) -> MetricLineage:
        return self.lineage.create_lineage(parent_result_key, child_result_key, contribution_weight)

    def query_lineage(
        self, parent_result_key: str | None = None, child_result_key: str | None = None
    ) -> list[MetricLineage]:
        return self.lineage.query_lineage(parent_result_key, child_result_key)

    def close(self) -> None:
        """Close database connection."""
        self.executor.close()

    def __enter__(self) -> "CanonicalMetricStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
