"""Exception hierarchy for metricledger.

every store operation raises one of these rather than leaking duckdb or
pydantic exceptions - callers (cli, http layer) only need to know this module.
"""

from typing import Any


class MetricLedgerError(Exception):
    """Base class for all metricledger errors."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.key = key  # the offending primary key, when there is one


class ValidationError(MetricLedgerError, ValueError):
    """Input failed validation before anything was written.

    raised for the one-value-populated rule on results, a missing org_id in
    grain_keys, attempts to change frozen version fields, and (under the strict
    policy) result metadata that doesn't satisfy the version's schema.
    it is also a ValueError so pydantic validators can raise it directly.
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, key)
        self.errors = errors or []  # pydantic-style error dicts when available


class ForeignKeyError(MetricLedgerError):
    """Reference to a metric, metric version or result that doesn't exist."""


class DuplicateKeyError(MetricLedgerError):
    """Insert of a primary (or composite) key that already exists."""


class NotFoundError(MetricLedgerError):
    """Explicit update/delete targeted a row that doesn't exist."""


class TransientInfrastructureError(MetricLedgerError):
    """Database connectivity or IO failure. Safe for the caller to retry."""
