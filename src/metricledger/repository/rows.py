"""Helpers shared by the repositories: json columns, coercion, inserts."""

import json
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from metricledger.errors import ValidationError
from metricledger.executor.duckdb_executor import DuckDBExecutor

ModelT = TypeVar("ModelT", bound=BaseModel)


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def from_json(value: Any) -> Any:
    # duckdb hands JSON columns back as str
    if isinstance(value, str):
        return json.loads(value)
    return value


def encode_row(row: Mapping[str, Any], json_columns: Iterable[str]) -> dict[str, Any]:
    encoded = dict(row)
    for column in json_columns:
        if column in encoded:
            encoded[column] = to_json(encoded[column])
    return encoded


def decode_row(row: Mapping[str, Any], json_columns: Iterable[str]) -> dict[str, Any]:
    decoded = dict(row)
    for column in json_columns:
        if column in decoded:
            decoded[column] = from_json(decoded[column])
    return decoded


def coerce(model: type[ModelT], data: ModelT | Mapping[str, Any], key: str | None = None) -> ModelT:
    """Validate caller input into `model`, raising our ValidationError on failure.

    already-built instances pass straight through - they were validated
    when they were constructed.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        if key is None and isinstance(data, Mapping):
            key = data.get("result_key") or data.get("metric_version_key") or data.get("metric_key")
        raise ValidationError(
            f"Invalid {model.__name__}: {_summarize(e)}",
            key=key,
            errors=e.errors(include_url=False),
        ) from e


def _summarize(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors(include_url=False):
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def insert_row(executor: DuckDBExecutor, table: str, row: Mapping[str, Any]) -> None:
    """INSERT one row. table and column names come from our own code, never callers."""
    columns = list(row)
    placeholders = ", ".join("?" for _ in columns)
    executor.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
        [row[c] for c in columns],
    )


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))
