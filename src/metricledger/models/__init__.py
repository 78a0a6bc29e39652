"""Pydantic models for metricledger."""

from metricledger.models.metric import (
    FROZEN_VERSION_FIELDS,
    ActiveMetricVersion,
    Frequency,
    Metric,
    MetricDomain,
    MetricUpdate,
    MetricVersion,
    MetricVersionUpdate,
    ResultType,
)
from metricledger.models.query import MetricSummary, ResultQuery
from metricledger.models.result import (
    VALUE_COLUMNS,
    BooleanValue,
    DatetimeValue,
    JsonValue,
    MetricLineage,
    NumericValue,
    Result,
    ResultBase,
    ResultValue,
    StagingResult,
    TextValue,
    create_grain_key,
    value_from_columns,
    value_to_columns,
)

__all__ = [
    "FROZEN_VERSION_FIELDS",
    "VALUE_COLUMNS",
    "ActiveMetricVersion",
    "BooleanValue",
    "DatetimeValue",
    "Frequency",
    "JsonValue",
    "Metric",
    "MetricDomain",
    "MetricLineage",
    "MetricSummary",
    "MetricUpdate",
    "MetricVersion",
    "MetricVersionUpdate",
    "NumericValue",
    "Result",
    "ResultBase",
    "ResultQuery",
    "ResultType",
    "ResultValue",
    "StagingResult",
    "TextValue",
    "create_grain_key",
    "value_from_columns",
    "value_to_columns",
]
