"""Table definitions for the canonical metric tables.

json-ish columns (tags, grain, metadata) are stored as duckdb JSON, which is
text underneath - the repositories json.dumps on the way in and json.loads
on the way out.

there are no FOREIGN KEY clauses on purpose: duckdb refuses updates to rows
that other tables reference, and versions get updated. references are checked
by the repositories before every write instead.
"""

from metricledger.executor.duckdb_executor import DuckDBExecutor

METRIC_TABLE = "canonical_metric"
VERSION_TABLE = "canonical_metric_version"
RESULT_TABLE = "canonical_result"
STAGING_TABLE = "canonical_staging_result"
LINEAGE_TABLE = "canonical_metric_lineage"

# result and staging share one column layout - promotion copies column for column
RESULT_COLUMNS = (
    "result_key",
    "grain_keys",
    "metric_version_key",
    "result_value_numeric",
    "result_value_datetime",
    "result_value_text",
    "result_value_boolean",
    "result_value_json",
    "measurement_period_start_datetime",
    "measurement_period_end_datetime",
    "as_of_datetime",
    "result_metadata",
    "calculated_at",
    "calculation_version",
)

_RESULT_BODY = """
    result_key VARCHAR PRIMARY KEY,
    grain_keys JSON NOT NULL,
    metric_version_key VARCHAR NOT NULL,
    result_value_numeric DECIMAL(15, 4),
    result_value_datetime TIMESTAMP,
    result_value_text VARCHAR,
    result_value_boolean BOOLEAN,
    result_value_json JSON,
    measurement_period_start_datetime TIMESTAMP,
    measurement_period_end_datetime TIMESTAMP,
    as_of_datetime TIMESTAMP,
    result_metadata JSON,
    calculated_at TIMESTAMP,
    calculation_version VARCHAR
"""

DDL = [
    f"""
    CREATE TABLE IF NOT EXISTS {METRIC_TABLE} (
        metric_key VARCHAR PRIMARY KEY,
        metric VARCHAR NOT NULL,
        metric_description VARCHAR NOT NULL,
        tags JSON
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {VERSION_TABLE} (
        metric_version_key VARCHAR PRIMARY KEY,
        metric_key VARCHAR NOT NULL,
        version_number VARCHAR NOT NULL,
        valid_from_datetime TIMESTAMP,
        valid_to_datetime TIMESTAMP,
        metric_version_name VARCHAR NOT NULL,
        metric_version_description VARCHAR NOT NULL,
        grain JSON,
        grain_description VARCHAR,
        domain VARCHAR NOT NULL,
        result_type VARCHAR,
        result_unit VARCHAR,
        frequency VARCHAR,
        source_category VARCHAR,
        is_regulatory BOOLEAN,
        regulatory_program VARCHAR,
        steward VARCHAR NOT NULL,
        developer VARCHAR NOT NULL,
        is_active BOOLEAN,
        metadata_schema JSON,
        required_metadata_fields JSON,
        created_datetime TIMESTAMP,
        updated_datetime TIMESTAMP
    )
    """,
    f"CREATE TABLE IF NOT EXISTS {RESULT_TABLE} ({_RESULT_BODY})",
    f"CREATE TABLE IF NOT EXISTS {STAGING_TABLE} ({_RESULT_BODY})",
    f"""
    CREATE TABLE IF NOT EXISTS {LINEAGE_TABLE} (
        parent_result_key VARCHAR NOT NULL,
        child_result_key VARCHAR NOT NULL,
        contribution_weight DECIMAL(5, 4),
        PRIMARY KEY (parent_result_key, child_result_key)
    )
    """,
]


def create_schema(executor: DuckDBExecutor) -> None:
    """Create any missing tables. Safe to run repeatedly."""
    with executor.transaction():
        for statement in DDL:
            executor.execute(statement)
