"""Pydantic models for the metric catalog and metric versions.

a Metric is just a named thing with tags. all the interesting stuff - grain,
result type, stewardship - lives on MetricVersion so that changing how a
metric is computed means authoring a new version, not editing history.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from metricledger.models.result import to_naive_utc


class MetricDomain(str, Enum):
    """Domain classification for a metric version."""

    CLINICAL = "Clinical"
    FINANCIAL = "Financial"
    OPERATIONAL = "Operational"
    REGULATORY = "Regulatory"
    QUALITY = "Quality"


class ResultType(str, Enum):
    """What kind of value a metric version produces.

    percentage/currency/count/ratio are all stored in the numeric column -
    the type is for display, not storage.
    """

    NUMERIC = "numeric"
    PERCENTAGE = "percentage"
    CURRENCY = "currency"
    COUNT = "count"
    RATIO = "ratio"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    JSON = "json"


class Frequency(str, Enum):
    """Reporting frequency."""

    REAL_TIME = "real-time"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class Metric(BaseModel):
    """A catalog entry (canonical_metric row)."""

    metric_key: str = Field(min_length=1)
    metric: str  # display name
    metric_description: str
    tags: list[str] = Field(default_factory=list)


class MetricUpdate(BaseModel):
    """Partial update for a catalog entry. metric_key is not updatable."""

    model_config = ConfigDict(extra="forbid")

    metric: str | None = None
    metric_description: str | None = None
    tags: list[str] | None = None


class MetricVersion(BaseModel):
    """A versioned, time-bounded definition of a metric.

    grain, domain and result_type are frozen once the version exists -
    MetricVersionUpdate simply doesn't have those fields.
    """

    model_config = ConfigDict(use_enum_values=True)

    metric_version_key: str = Field(min_length=1)
    metric_key: str = Field(min_length=1)
    version_number: str
    valid_from_datetime: datetime | None = None
    valid_to_datetime: datetime | None = None  # None means open-ended
    metric_version_name: str
    metric_version_description: str
    grain: dict[str, str] | None = None  # dimension name -> descriptor, e.g. {"org_id": "string"}
    grain_description: str | None = None
    domain: MetricDomain
    result_type: ResultType | None = None
    result_unit: str | None = None
    frequency: Frequency | None = None
    source_category: str | None = None
    is_regulatory: bool = False
    regulatory_program: str | None = None
    steward: str
    developer: str
    is_active: bool = True
    metadata_schema: dict[str, Any] | None = None
    required_metadata_fields: list[str] = Field(default_factory=list)
    created_datetime: datetime | None = None  # stamped by the store
    updated_datetime: datetime | None = None

    @field_validator(
        "valid_from_datetime",
        "valid_to_datetime",
        "created_datetime",
        "updated_datetime",
    )
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def check_validity_window(self) -> Self:
        if (
            self.valid_from_datetime is not None
            and self.valid_to_datetime is not None
            and self.valid_to_datetime < self.valid_from_datetime
        ):
            raise ValueError("valid_to_datetime must not be earlier than valid_from_datetime")
        return self

    def is_valid_at(self, moment: datetime) -> bool:
        """Whether the validity window covers a point in time.

        the window is [valid_from, valid_to) - a version that ends at midnight
        isn't in force at midnight, its successor is.
        """
        moment = to_naive_utc(moment)
        if self.valid_from_datetime is not None and moment < self.valid_from_datetime:
            return False
        if self.valid_to_datetime is not None and moment >= self.valid_to_datetime:
            return False
        return True


# fields that define calculation semantics - changing any of these needs a new version
FROZEN_VERSION_FIELDS = frozenset(
    {"metric_version_key", "metric_key", "grain", "domain", "result_type"}
)


class MetricVersionUpdate(BaseModel):
    """Partial update for a metric version.

    extra="forbid" is what stops someone sneaking a domain or grain change in -
    those fields aren't declared here so pydantic rejects them.
    """

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    version_number: str | None = None
    valid_from_datetime: datetime | None = None
    valid_to_datetime: datetime | None = None
    metric_version_name: str | None = None
    metric_version_description: str | None = None
    grain_description: str | None = None
    result_unit: str | None = None
    frequency: Frequency | None = None
    source_category: str | None = None
    is_regulatory: bool | None = None
    regulatory_program: str | None = None
    steward: str | None = None
    developer: str | None = None
    is_active: bool | None = None
    metadata_schema: dict[str, Any] | None = None
    required_metadata_fields: list[str] | None = None

    @field_validator("valid_from_datetime", "valid_to_datetime")
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return to_naive_utc(value)


class ActiveMetricVersion(MetricVersion):
    """An active version joined with its parent metric, for catalog display."""

    metric: str
    tags: list[str] = Field(default_factory=list)
