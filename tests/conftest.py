"""Pytest fixtures for metricledger tests."""

from collections.abc import Callable, Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from metricledger.config import Settings
from metricledger.store import CanonicalMetricStore


@pytest.fixture
def sample_catalog_yaml() -> str:
    """Sample catalog YAML content for testing."""
    return """
metrics:
  - metric_key: total_ar
    metric: Total Accounts Receivable
    metric_description: Outstanding receivables across payers
    tags: [revenue_cycle, financial]

  - metric_key: denial_rate
    metric: Denial Rate
    metric_description: Percentage of claims denied by payers
    tags: [revenue_cycle, quality]

metric_versions:
  - metric_version_key: total_ar_v1
    metric_key: total_ar
    version_number: v1.0
    valid_from_datetime: "2024-01-01T00:00:00"
    metric_version_name: Total AR - Standard
    metric_version_description: Total AR by organization and entity
    grain:
      org_id: string
      entity_id: string
    domain: Financial
    result_type: currency
    result_unit: dollars
    frequency: daily
    steward: Revenue Cycle Manager
    developer: Analytics
    required_metadata_fields: [calculation_date]

  - metric_version_key: denial_rate_v1
    metric_key: denial_rate
    version_number: v1.0
    metric_version_name: Denial Rate - Clinical
    metric_version_description: Clinical denials only
    grain:
      org_id: string
    domain: Clinical
    result_type: percentage
    frequency: monthly
    is_regulatory: true
    regulatory_program: CMS
    steward: Clinical Director
    developer: Analytics
"""


@pytest.fixture
def catalog_dir(tmp_path: Path, sample_catalog_yaml: str) -> Path:
    """Create a temporary catalog directory with sample YAML."""
    path = tmp_path / "catalog"
    path.mkdir()
    (path / "revenue.yaml").write_text(sample_catalog_yaml)
    return path


@pytest.fixture
def settings() -> Settings:
    return Settings(database_path=None, metadata_policy="advisory", latest_limit=10)


@pytest.fixture
def store(settings: Settings) -> Generator[CanonicalMetricStore, None, None]:
    """An in-memory store with the schema created."""
    store = CanonicalMetricStore(settings).init_schema()
    yield store
    store.close()


@pytest.fixture
def metric_data() -> dict[str, Any]:
    return {
        "metric_key": "total_ar",
        "metric": "Total Accounts Receivable",
        "metric_description": "Outstanding receivables across payers",
        "tags": ["revenue_cycle", "financial"],
    }


@pytest.fixture
def version_data() -> dict[str, Any]:
    return {
        "metric_version_key": "mv1",
        "metric_key": "total_ar",
        "version_number": "v1.0",
        "valid_from_datetime": datetime(2024, 1, 1),
        "metric_version_name": "Total AR - Standard",
        "metric_version_description": "Total AR by organization and entity",
        "grain": {"org_id": "string", "entity_id": "string"},
        "domain": "Financial",
        "result_type": "currency",
        "result_unit": "dollars",
        "frequency": "daily",
        "steward": "Revenue Cycle Manager",
        "developer": "Analytics",
    }


@pytest.fixture
def seeded_store(
    store: CanonicalMetricStore, metric_data: dict[str, Any], version_data: dict[str, Any]
) -> CanonicalMetricStore:
    """Store with one metric (total_ar) and one version (mv1)."""
    store.create_metric(metric_data)
    store.create_version(version_data)
    return store


@pytest.fixture
def make_result() -> Callable[..., dict[str, Any]]:
    """Factory for result rows in the flat column form the calculation jobs use."""

    def _make(
        result_key: str,
        org_id: str = "HC001",
        entity_id: str | None = "E1",
        metric_version_key: str = "mv1",
        value: Any = 1000.00,
        calculated_at: datetime | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        grain = {"org_id": org_id}
        if entity_id:
            grain["entity_id"] = entity_id
        row = {
            "result_key": result_key,
            "grain_keys": grain,
            "metric_version_key": metric_version_key,
            "result_value_numeric": value,
            "calculated_at": calculated_at or datetime(2024, 6, 1, 12, 0),
        }
        row.update(extra)
        return row

    return _make
