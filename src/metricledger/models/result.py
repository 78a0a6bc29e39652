"""Pydantic models for computed results, staging rows and lineage edges.

the database stores a result value as five nullable columns
(result_value_numeric, _datetime, _text, _boolean, _json). in python that's a
proper discriminated union instead - you get exactly one ResultValue, and the
five-column form only exists at the edges (value_to_columns / value_from_columns).
"""

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from metricledger.errors import ValidationError

# grain dimension names end up inside json paths, so keep them boring
GRAIN_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_FOUR_PLACES = Decimal("0.0001")
_NUMERIC_LIMIT = Decimal(10) ** 11


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize aware datetimes to naive UTC - duckdb TIMESTAMP has no zone."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def check_grain_dimension(name: str) -> str:
    """Validate a grain dimension name, raising ValidationError if it's unusable."""
    if not GRAIN_KEY_PATTERN.match(name):
        raise ValidationError(f"Invalid grain dimension name: {name!r}")
    return name


def create_grain_key(
    org_id: str, entity_id: str | None = None, **additional: str
) -> dict[str, str]:
    """Build a grain_keys mapping. org_id always comes first."""
    grain = {"org_id": org_id}
    if entity_id:
        grain["entity_id"] = entity_id
    grain.update(additional)
    return grain


# --- the tagged union ---


class NumericValue(BaseModel):
    """Decimal value. percentages, currency, counts and ratios all land here."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    value: Decimal

    @field_validator("value")
    @classmethod
    def fit_storage(cls, value: Decimal) -> Decimal:
        # stored as DECIMAL(15, 4) - round here so what we return is what we store
        value = value.quantize(_FOUR_PLACES, rounding=ROUND_HALF_EVEN)
        if abs(value) >= _NUMERIC_LIMIT:
            raise ValueError("numeric result value exceeds DECIMAL(15, 4)")
        return value


class DatetimeValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["datetime"] = "datetime"
    value: datetime

    @field_validator("value")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class TextValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str


class BooleanValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["boolean"] = "boolean"
    value: bool


class JsonValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["json"] = "json"
    value: dict[str, Any] | list[Any]


ResultValue = Annotated[
    NumericValue | DatetimeValue | TextValue | BooleanValue | JsonValue,
    Field(discriminator="kind"),
]

VALUE_COLUMNS: dict[str, str] = {
    "numeric": "result_value_numeric",
    "datetime": "result_value_datetime",
    "text": "result_value_text",
    "boolean": "result_value_boolean",
    "json": "result_value_json",
}
_KIND_FOR_COLUMN = {column: kind for kind, column in VALUE_COLUMNS.items()}
_VALUE_CLASSES: dict[str, type[BaseModel]] = {
    "numeric": NumericValue,
    "datetime": DatetimeValue,
    "text": TextValue,
    "boolean": BooleanValue,
    "json": JsonValue,
}


def value_to_columns(value: ResultValue) -> dict[str, Any]:
    """Spread a ResultValue over the five storage columns."""
    columns: dict[str, Any] = {column: None for column in VALUE_COLUMNS.values()}
    columns[VALUE_COLUMNS[value.kind]] = value.value
    return columns


def value_from_columns(columns: Mapping[str, Any]) -> ResultValue:
    """Collapse the five storage columns back into a single ResultValue.

    raises ValidationError unless exactly one column is populated.
    """
    column = single_value_column(columns)
    kind = _KIND_FOR_COLUMN[column]
    return _VALUE_CLASSES[kind](value=columns[column])


def single_value_column(columns: Mapping[str, Any]) -> str:
    """Name of the one populated value column. ValidationError if not exactly one."""
    populated = [col for col in VALUE_COLUMNS.values() if columns.get(col) is not None]
    if not populated:
        raise ValidationError("Exactly one result_value field must be populated, got none")
    if len(populated) > 1:
        raise ValidationError(
            "Exactly one result_value field must be populated, "
            f"got {len(populated)}: {', '.join(populated)}"
        )
    return populated[0]


# --- results ---


class ResultBase(BaseModel):
    """Shared shape of canonical_result and canonical_staging_result rows.

    accepts either `value=` (the union) or the flat result_value_* fields -
    the flat form is what the calculation jobs and the database speak.
    """

    result_key: str = Field(min_length=1)
    grain_keys: dict[str, str]
    metric_version_key: str = Field(min_length=1)
    value: ResultValue
    measurement_period_start_datetime: datetime | None = None
    measurement_period_end_datetime: datetime | None = None
    as_of_datetime: datetime | None = None
    result_metadata: dict[str, Any] | None = None
    calculated_at: datetime | None = None
    calculation_version: str | None = None  # tells reruns of the same logic apart

    @model_validator(mode="before")
    @classmethod
    def collapse_value_columns(cls, data: Any) -> Any:
        """Turn result_value_* fields into `value`, enforcing exactly one."""
        if not isinstance(data, Mapping):
            return data

        data = dict(data)
        flat = {col: data.pop(col) for col in VALUE_COLUMNS.values() if col in data}
        if data.get("value") is not None:
            if any(v is not None for v in flat.values()):
                raise ValueError("Pass either value or result_value_* fields, not both")
            return data

        column = single_value_column(flat)
        data["value"] = {"kind": _KIND_FOR_COLUMN[column], "value": flat[column]}
        return data

    @field_validator("grain_keys")
    @classmethod
    def check_grain_keys(cls, grain_keys: dict[str, str]) -> dict[str, str]:
        # multi-tenant isolation - every row belongs to exactly one org
        if not grain_keys.get("org_id"):
            raise ValueError("grain_keys must include org_id for multi-tenant support")
        for name in grain_keys:
            if not GRAIN_KEY_PATTERN.match(name):
                raise ValueError(f"Invalid grain dimension name: {name!r}")
        return grain_keys

    @field_validator(
        "measurement_period_start_datetime",
        "measurement_period_end_datetime",
        "as_of_datetime",
        "calculated_at",
    )
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def check_measurement_period(self) -> Self:
        start = self.measurement_period_start_datetime
        end = self.measurement_period_end_datetime
        if start is not None and end is not None and end < start:
            raise ValueError("measurement_period_end_datetime is before its start")
        return self

    @property
    def raw_value(self) -> Any:
        """The plain python value, whichever kind it is."""
        return self.value.value

    @property
    def org_id(self) -> str:
        return self.grain_keys["org_id"]

    def to_columns(self) -> dict[str, Any]:
        """Flatten to the storage layout (five value columns, no `value`)."""
        row = self.model_dump(exclude={"value"})
        row.update(value_to_columns(self.value))
        return row


class Result(ResultBase):
    """A finalized, immutable computed value."""


class StagingResult(ResultBase):
    """A computed value waiting for promotion."""

    def to_result(self) -> Result:
        """The Result this row becomes once promoted - same keys, same value."""
        return Result.model_validate(self.model_dump())


# --- lineage ---


class MetricLineage(BaseModel):
    """A derivation edge: parent result was built (partly) from child result."""

    parent_result_key: str = Field(min_length=1)
    child_result_key: str = Field(min_length=1)
    contribution_weight: Decimal | None = Field(default=None, max_digits=5, decimal_places=4)
