"""CLI for metricledger."""

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.table import Table

from metricledger.config import Settings, configure_logging
from metricledger.errors import MetricLedgerError
from metricledger.models.result import ResultBase
from metricledger.parser.loader import CatalogLoader
from metricledger.store import CanonicalMetricStore

app = typer.Typer(
    name="mledger",
    help="metricledger - canonical metric catalog and results CLI",
    no_args_is_help=True,
)
console = Console()

DbOption = Annotated[
    str | None, typer.Option("--db", help="DuckDB database path (default: METRICLEDGER_DATABASE_PATH)")
]
OutputOption = Annotated[str, typer.Option("--output", "-o", help="Output format: table, json")]


def get_store(db_path: str | None = None) -> CanonicalMetricStore:
    settings = Settings()
    if db_path:
        settings = settings.model_copy(update={"database_path": db_path})
    configure_logging(settings.log_level)
    return CanonicalMetricStore(settings).init_schema()


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(1)


@app.command()
def init(db_path: DbOption = None) -> None:
    """Create the canonical metric tables."""
    try:
        with get_store(db_path) as store:
            location = store.executor.database_path or ":memory:"
    except MetricLedgerError as e:
        raise _fail(f"Error: {e}")
    console.print(f"[green]Schema ready at {location}[/green]")


@app.command("load-catalog")
def load_catalog(
    catalog_dir: Annotated[Path, typer.Argument(help="Directory of catalog YAML files")],
    db_path: DbOption = None,
) -> None:
    """Create or update metrics and versions from catalog YAML."""
    try:
        loader = CatalogLoader().load_directory(catalog_dir)
        with get_store(db_path) as store:
            summary = loader.apply(store.catalog)
    except (MetricLedgerError, FileNotFoundError, ValueError) as e:
        raise _fail(f"Error loading catalog: {e}")

    console.print(
        f"[green]Catalog applied: {summary.metrics_created} metrics created, "
        f"{summary.metrics_updated} updated; {summary.versions_created} versions created, "
        f"{summary.versions_updated} updated; {summary.unchanged} unchanged[/green]"
    )


@app.command("list")
def list_items(
    item_type: Annotated[str, typer.Argument(help="Type: metrics, versions, or active")],
    metric_key: Annotated[
        str | None, typer.Option("--metric", "-m", help="Only versions of this metric")
    ] = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """List metrics, metric versions, or active versions."""
    if item_type not in ("metrics", "versions", "active"):
        raise _fail(f"Unknown type: {item_type}. Use: metrics, versions, active")

    try:
        with get_store(db_path) as store:
            if item_type == "metrics":
                items = store.list_metrics()
            elif item_type == "versions":
                items = store.list_versions(metric_key)
            else:
                items = store.list_active_versions()
    except MetricLedgerError as e:
        raise _fail(f"Error: {e}")

    if output == "json":
        _print_json(items)
    elif item_type == "metrics":
        _metrics_table(items)
    else:
        _versions_table(items, title="Active Versions" if item_type == "active" else "Versions")


def _metrics_table(metrics) -> None:
    if not metrics:
        console.print("[yellow]No metrics defined[/yellow]")
        return

    table = Table(title="Metrics")
    table.add_column("Key", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Tags")
    table.add_column("Description")

    for metric in metrics:
        table.add_row(
            metric.metric_key,
            metric.metric,
            ", ".join(metric.tags) or "-",
            metric.metric_description or "-",
        )

    console.print(table)


def _versions_table(versions, title: str) -> None:
    if not versions:
        console.print("[yellow]No metric versions defined[/yellow]")
        return

    table = Table(title=title)
    table.add_column("Key", style="cyan")
    table.add_column("Metric", style="green")
    table.add_column("Version")
    table.add_column("Domain", style="yellow")
    table.add_column("Result Type")
    table.add_column("Active")

    for version in versions:
        table.add_row(
            version.metric_version_key,
            version.metric_key,
            version.version_number,
            version.domain,
            version.result_type or "-",
            "yes" if version.is_active else "no",
        )

    console.print(table)


@app.command()
def results(
    org_id: Annotated[str | None, typer.Option("--org", help="Organization id")] = None,
    entity_id: Annotated[str | None, typer.Option("--entity", help="Entity id")] = None,
    metric_version_key: Annotated[
        str | None, typer.Option("--version", "-v", help="Metric version key")
    ] = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """Query finalized results (newest first)."""
    try:
        with get_store(db_path) as store:
            rows = store.query_results(org_id, entity_id, metric_version_key)
    except MetricLedgerError as e:
        raise _fail(f"Query error: {e}")
    _output_results(rows, output, title="Results")


@app.command()
def latest(
    metric_version_key: Annotated[str, typer.Argument(help="Metric version key")],
    org_id: Annotated[str | None, typer.Option("--org", help="Organization id")] = None,
    entity_id: Annotated[str | None, typer.Option("--entity", help="Entity id")] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum rows")] = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """Show the newest results for one metric version."""
    try:
        with get_store(db_path) as store:
            rows = store.latest_results(metric_version_key, org_id, entity_id, limit)
    except MetricLedgerError as e:
        raise _fail(f"Query error: {e}")
    _output_results(rows, output, title=f"Latest {metric_version_key}")


@app.command("by-grain")
def by_grain(
    grain: Annotated[list[str], typer.Argument(help="Grain filters as name=value")],
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """Find results whose grain matches every name=value given."""
    grain_keys = {}
    for item in grain:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise _fail(f"Invalid grain filter '{item}', expected name=value")
        grain_keys[name] = value

    try:
        with get_store(db_path) as store:
            rows = store.query_by_grain(grain_keys)
    except MetricLedgerError as e:
        raise _fail(f"Query error: {e}")
    _output_results(rows, output, title="Results by grain")


@app.command()
def staging(
    metric_version_key: Annotated[
        str | None, typer.Option("--version", "-v", help="Metric version key")
    ] = None,
    org_id: Annotated[str | None, typer.Option("--org", help="Organization id")] = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """List staged results waiting for promotion."""
    try:
        with get_store(db_path) as store:
            rows = store.list_staging(metric_version_key, org_id)
    except MetricLedgerError as e:
        raise _fail(f"Query error: {e}")
    _output_results(rows, output, title="Staging")


@app.command()
def promote(
    metric_version_key: Annotated[str, typer.Argument(help="Metric version key")],
    db_path: DbOption = None,
) -> None:
    """Promote staged results for a metric version into the result store."""
    try:
        with get_store(db_path) as store:
            count = store.promote(metric_version_key)
    except MetricLedgerError as e:
        raise _fail(f"Promotion failed: {e}")
    console.print(f"[green]Promoted {count} results for {metric_version_key}[/green]")


@app.command("clear-staging")
def clear_staging(
    metric_version_key: Annotated[
        str | None, typer.Option("--version", "-v", help="Only this metric version")
    ] = None,
    db_path: DbOption = None,
) -> None:
    """Discard staged results without promoting them."""
    try:
        with get_store(db_path) as store:
            count = store.clear_staging(metric_version_key)
    except MetricLedgerError as e:
        raise _fail(f"Error: {e}")
    console.print(f"[green]Cleared {count} staging results[/green]")


@app.command()
def lineage(
    parent: Annotated[str | None, typer.Option("--parent", help="Parent result key")] = None,
    child: Annotated[str | None, typer.Option("--child", help="Child result key")] = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """List lineage edges between results."""
    try:
        with get_store(db_path) as store:
            edges = store.query_lineage(parent, child)
    except MetricLedgerError as e:
        raise _fail(f"Query error: {e}")

    if output == "json":
        _print_json(edges)
        return
    if not edges:
        console.print("[yellow]No lineage edges[/yellow]")
        return

    table = Table(title="Lineage")
    table.add_column("Parent", style="cyan")
    table.add_column("Child", style="green")
    table.add_column("Weight")
    for edge in edges:
        weight = edge.contribution_weight
        table.add_row(edge.parent_result_key, edge.child_result_key, "-" if weight is None else str(weight))
    console.print(table)


@app.command()
def hierarchy(
    metric_version_key: Annotated[str, typer.Argument(help="Metric version key")],
    closure: Annotated[
        bool, typer.Option("--closure", help="Follow lineage all the way, not just one hop")
    ] = False,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """Show a version's results and the results connected to them by lineage."""
    try:
        with get_store(db_path) as store:
            rows = store.get_hierarchy(metric_version_key, closure=closure)
    except MetricLedgerError as e:
        raise _fail(f"Query error: {e}")
    _output_results(rows, output, title=f"Hierarchy for {metric_version_key}")


@app.command()
def summary(
    org_id: Annotated[str, typer.Argument(help="Organization id")],
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """Latest value of every active metric for one organization."""
    try:
        with get_store(db_path) as store:
            rows = store.metrics_summary(org_id)
    except MetricLedgerError as e:
        raise _fail(f"Query error: {e}")

    if output == "json":
        _print_json(rows)
        return
    if not rows:
        console.print("[yellow]No active metric versions[/yellow]")
        return

    table = Table(title=f"Metrics summary for {org_id}")
    table.add_column("Version", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Domain", style="yellow")
    table.add_column("Latest")
    table.add_column("Unit")
    table.add_column("Calculated")
    for row in rows:
        table.add_row(
            row.metric_version_key,
            row.metric_version_name,
            row.domain,
            "-" if row.latest_value is None else _format_value(row.latest_value.value),
            row.result_unit or "-",
            str(row.calculated_at or "-"),
        )
    console.print(table)


def _output_results(rows: Sequence[ResultBase], output_format: str, title: str) -> None:
    """Print results in the requested format."""
    if output_format == "json":
        _print_json(rows)
        return
    if not rows:
        console.print("[yellow]No results[/yellow]")
        return

    table = Table(title=f"{title} ({len(rows)} rows)")
    table.add_column("Key", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Grain")
    table.add_column("Value")
    table.add_column("Calculated")
    for row in rows:
        table.add_row(
            row.result_key,
            row.metric_version_key,
            ", ".join(f"{k}={v}" for k, v in row.grain_keys.items()),
            _format_value(row.raw_value),
            str(row.calculated_at or "-"),
        )
    console.print(table)


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _print_json(items: Sequence[BaseModel]) -> None:
    payload = [item.model_dump(mode="json") for item in items]
    console.print(json.dumps(payload, indent=2, default=str), markup=False, soft_wrap=True)


if __name__ == "__main__":
    app()
