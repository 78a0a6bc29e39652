"""Basic usage example for metricledger."""

import sys
from datetime import datetime
from pathlib import Path

# Add parent to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from metricledger.config import Settings
from metricledger.models import create_grain_key
from metricledger.parser.loader import CatalogLoader
from metricledger.store import CanonicalMetricStore

CATALOG_DIR = Path(__file__).parent.parent / "catalog"


def main():
    """Walk a calculation run through staging, promotion and lineage."""
    store = CanonicalMetricStore(Settings(database_path=None)).init_schema()

    summary = CatalogLoader().load_directory(CATALOG_DIR).apply(store.catalog)

    print("=" * 60)
    print("metricledger revenue cycle demo")
    print("=" * 60)

    # 1. Catalog
    print(f"\n1. Catalog: {summary.metrics_created} metrics, {summary.versions_created} versions")
    for version in store.list_active_versions():
        print(f"   {version.metric_version_key}: {version.metric} ({version.domain})")

    # 2. Stage a calculation run: one org-level total and two facility values
    print("\n2. Staging total_ar_hc_v1 results:")
    calculated_at = datetime(2024, 6, 1, 6, 0)
    rows = [
        ("ar_total_hc001", create_grain_key("HC001"), 1_250_000),
        ("ar_hc001_main", create_grain_key("HC001", "MAIN"), 800_000),
        ("ar_hc001_north", create_grain_key("HC001", "NORTH"), 450_000),
    ]
    for result_key, grain, amount in rows:
        store.insert_staging(
            {
                "result_key": result_key,
                "grain_keys": grain,
                "metric_version_key": "total_ar_hc_v1",
                "result_value_numeric": amount,
                "result_metadata": {"calculation_date": "2024-06-01"},
                "calculated_at": calculated_at,
                "calculation_version": "2024.06.01",
            }
        )
    print(f"   {len(store.list_staging('total_ar_hc_v1'))} rows staged")

    # 3. Promote
    promoted = store.promote("total_ar_hc_v1")
    print(f"\n3. Promoted {promoted} results; staging now has {len(store.list_staging())} rows")

    # 4. Lineage: the total is built from the facility values
    store.create_lineage("ar_total_hc001", "ar_hc001_main", "0.64")
    store.create_lineage("ar_total_hc001", "ar_hc001_north", "0.36")
    print("\n4. Lineage:")
    for edge in store.query_lineage(parent_result_key="ar_total_hc001"):
        print(f"   {edge.parent_result_key} <- {edge.child_result_key} ({edge.contribution_weight})")

    # 5. Grain queries
    print("\n5. HC001 / MAIN:")
    for result in store.query_by_grain({"org_id": "HC001", "entity_id": "MAIN"}):
        print(f"   {result.result_key}: ${result.raw_value:,.2f}")

    # 6. Dashboard summary
    print("\n6. Summary for HC001:")
    for row in store.metrics_summary("HC001"):
        latest = "-" if row.latest_value is None else row.latest_value.value
        print(f"   {row.metric_version_name}: {latest} {row.result_unit or ''}")

    store.close()


if __name__ == "__main__":
    main()
