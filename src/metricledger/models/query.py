"""Pydantic models for result queries and dashboard summaries.

query model is intentionally simple - it captures which slice of results the
caller wants, the result store handles turning that into sql.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from metricledger.models.result import Result, ResultValue


class ResultQuery(BaseModel):
    """Filter for result lookups. every provided field must match (AND).

    an empty query means "all rows" - callers serving dashboards should
    always set at least org_id.
    """

    # an empty string is rejected, not read as "no filter" - org_id="" must
    # never widen a tenant query to every tenant
    org_id: str | None = Field(default=None, min_length=1)
    entity_id: str | None = Field(default=None, min_length=1)
    metric_version_key: str | None = Field(default=None, min_length=1)
    limit: int | None = Field(default=None, gt=0)

    def is_empty(self) -> bool:
        return self.org_id is None and self.entity_id is None and self.metric_version_key is None


class MetricSummary(BaseModel):
    """Latest value of one active metric version for one organization.

    this is what the "current value" widgets render - one row per active
    version, latest_value is None when nothing has been calculated yet.
    """

    metric_version_key: str
    metric_version_name: str
    domain: str
    result_type: str | None = None
    result_unit: str | None = None
    latest_value: ResultValue | None = None
    calculated_at: datetime | None = None
    grain_keys: dict[str, str] | None = None

    @classmethod
    def from_latest(cls, version, latest: Result | None) -> "MetricSummary":
        return cls(
            metric_version_key=version.metric_version_key,
            metric_version_name=version.metric_version_name,
            domain=version.domain,
            result_type=version.result_type,
            result_unit=version.result_unit,
            latest_value=latest.value if latest else None,
            calculated_at=latest.calculated_at if latest else None,
            grain_keys=latest.grain_keys if latest else None,
        )
