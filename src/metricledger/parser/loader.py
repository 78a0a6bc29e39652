"""YAML catalog loader for metricledger.

catalog definitions (metrics and their versions) live in yaml files checked
into git, the same way the seed catalog always has. the loader parses and
cross-checks them, then applies them to a store - creating what's new and
updating what changed.

yaml because analysts edit these by hand and comments are too useful to lose.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

from metricledger.errors import DuplicateKeyError, ForeignKeyError, ValidationError
from metricledger.models.metric import (
    FROZEN_VERSION_FIELDS,
    Metric,
    MetricVersion,
    MetricVersionUpdate,
)
from metricledger.repository.catalog import MetricCatalog
from metricledger.repository.rows import coerce

logger = logging.getLogger(__name__)

# fields compared when deciding whether an existing metric needs an update
_METRIC_MUTABLE_FIELDS = ("metric", "metric_description", "tags")


class CatalogLoadSummary(BaseModel):
    """What apply() did."""

    metrics_created: int = 0
    metrics_updated: int = 0
    versions_created: int = 0
    versions_updated: int = 0
    unchanged: int = 0


class CatalogLoader:
    """Parses catalog yaml into Metric / MetricVersion models.

    files can contain `metrics`, `metric_versions`, or both. keys must be
    unique across all loaded files.
    """

    def __init__(self) -> None:
        self.metrics: dict[str, Metric] = {}
        self.versions: dict[str, MetricVersion] = {}

    def load_directory(self, path: Path | str) -> "CatalogLoader":
        """Load all YAML files from a directory (recursively).

        order doesn't matter - references are checked after everything is read.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Catalog directory not found: {path}")

        # support both .yaml and .yml
        yaml_files = sorted(path.glob("**/*.yaml")) + sorted(path.glob("**/*.yml"))
        if not yaml_files:
            raise ValueError(f"No YAML files found in {path}")

        for yaml_file in yaml_files:
            self._load_file(yaml_file)

        self._validate_references()
        logger.info(
            "loaded %d metrics and %d versions from %s",
            len(self.metrics),
            len(self.versions),
            path,
        )
        return self

    def load_file(self, path: Path | str) -> "CatalogLoader":
        self._load_file(Path(path))
        self._validate_references()
        return self

    def _load_file(self, path: Path) -> None:
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return  # empty file, nothing to do
        if not isinstance(data, dict):
            raise ValidationError(f"{path}: expected a mapping at the top level")

        # metrics first so a file can define a metric and its versions together
        for metric_data in data.get("metrics") or []:
            metric = coerce(Metric, metric_data)
            if metric.metric_key in self.metrics:
                raise DuplicateKeyError(
                    f"{path}: duplicate metric {metric.metric_key}", key=metric.metric_key
                )
            self.metrics[metric.metric_key] = metric

        for version_data in data.get("metric_versions") or []:
            version = coerce(MetricVersion, version_data)
            if version.metric_version_key in self.versions:
                raise DuplicateKeyError(
                    f"{path}: duplicate metric version {version.metric_version_key}",
                    key=version.metric_version_key,
                )
            self.versions[version.metric_version_key] = version

    def _validate_references(self) -> None:
        """Every version must point at a metric defined in the loaded files.

        catches typos in metric_key at load time instead of halfway through
        applying a catalog.
        """
        for key, version in self.versions.items():
            if version.metric_key not in self.metrics:
                raise ForeignKeyError(
                    f"Metric version '{key}' references unknown metric '{version.metric_key}'",
                    key=version.metric_key,
                )

    def apply(self, catalog: MetricCatalog) -> CatalogLoadSummary:
        """Create or update everything loaded, in one transaction.

        an existing version whose grain, domain or result_type differs from the
        file is an error - that's a new version, not an edit.
        """
        summary = CatalogLoadSummary()

        with catalog.executor.transaction():
            for metric in self.metrics.values():
                existing = catalog.get_metric(metric.metric_key)
                if existing is None:
                    catalog.create_metric(metric)
                    summary.metrics_created += 1
                    continue
                changes = _changed_fields(existing, metric, _METRIC_MUTABLE_FIELDS)
                if changes:
                    catalog.update_metric(metric.metric_key, changes)
                    summary.metrics_updated += 1
                else:
                    summary.unchanged += 1

            for version in self.versions.values():
                existing = catalog.get_version(version.metric_version_key)
                if existing is None:
                    catalog.create_version(version)
                    summary.versions_created += 1
                    continue
                frozen = _changed_fields(existing, version, sorted(FROZEN_VERSION_FIELDS))
                if frozen:
                    raise ValidationError(
                        f"Metric version '{version.metric_version_key}' changes frozen "
                        f"field(s) {', '.join(frozen)} - author a new version instead",
                        key=version.metric_version_key,
                    )
                changes = _changed_fields(existing, version, MetricVersionUpdate.model_fields)
                if changes:
                    catalog.update_version(version.metric_version_key, changes)
                    summary.versions_updated += 1
                else:
                    summary.unchanged += 1

        logger.info("applied catalog: %s", summary.model_dump())
        return summary


def _changed_fields(current: BaseModel, desired: BaseModel, fields: Any) -> dict[str, Any]:
    return {
        field: getattr(desired, field)
        for field in fields
        if getattr(current, field) != getattr(desired, field)
    }
