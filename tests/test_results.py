"""Tests for the result store: inserts, filters, latest values and hierarchy."""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

import pytest

from metricledger.config import MetadataPolicy, Settings
from metricledger.errors import DuplicateKeyError, ForeignKeyError, NotFoundError, ValidationError
from metricledger.models import NumericValue, Result, ResultQuery
from metricledger.store import CanonicalMetricStore

MakeResult = Callable[..., dict[str, Any]]


class TestInsertResult:
    def test_insert_and_read_back(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """A stored result reads back unchanged."""
        inserted = seeded_store.insert_result(
            make_result("r1", value=Decimal("1234.5678"), result_metadata={"source": "billing"})
        )

        stored = seeded_store.results.get_result("r1")
        assert stored == inserted
        assert stored.value == NumericValue(value=Decimal("1234.5678"))
        assert stored.result_metadata == {"source": "billing"}

    @pytest.mark.parametrize(
        "column, value, kind",
        [
            ("result_value_text", "on track", "text"),
            ("result_value_boolean", False, "boolean"),
            ("result_value_datetime", datetime(2024, 3, 1, 8, 30), "datetime"),
            ("result_value_json", {"buckets": {"0-30": 10, "31-60": 4}}, "json"),
        ],
    )
    def test_value_kinds_survive_storage(
        self,
        seeded_store: CanonicalMetricStore,
        make_result: MakeResult,
        column: str,
        value: Any,
        kind: str,
    ):
        """Every value kind comes back as the same kind and value."""
        seeded_store.insert_result(make_result("r1", value=None, **{column: value}))

        stored = seeded_store.results.get_result("r1")
        assert stored.value.kind == kind
        assert stored.raw_value == value

    def test_unknown_version(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """Results for an unknown metric version are rejected."""
        with pytest.raises(ForeignKeyError) as exc_info:
            seeded_store.insert_result(make_result("r1", metric_version_key="missing"))
        assert exc_info.value.key == "missing"

    def test_duplicate_result(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """Re-inserting a result_key fails."""
        seeded_store.insert_result(make_result("r1"))
        with pytest.raises(DuplicateKeyError):
            seeded_store.insert_result(make_result("r1", value=5))

    def test_missing_org_id(self, seeded_store: CanonicalMetricStore):
        """grain_keys without org_id fail before anything is written."""
        with pytest.raises(ValidationError) as exc_info:
            seeded_store.insert_result(
                {
                    "result_key": "r1",
                    "grain_keys": {"entity_id": "E1"},
                    "metric_version_key": "mv1",
                    "result_value_numeric": 1,
                }
            )
        assert exc_info.value.key == "r1"
        assert seeded_store.results.get_result("r1") is None

    def test_two_values(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """Two populated value columns fail validation."""
        with pytest.raises(ValidationError):
            seeded_store.insert_result(make_result("r1", result_value_text="also"))
        assert seeded_store.query_results() == []

    def test_bulk_insert_all_or_nothing(
        self, seeded_store: CanonicalMetricStore, make_result: MakeResult
    ):
        """A failing row in a bulk insert leaves nothing behind."""
        with pytest.raises(ForeignKeyError):
            seeded_store.results.insert_results(
                [make_result("r1"), make_result("r2", metric_version_key="missing")]
            )
        assert seeded_store.query_results() == []

        assert seeded_store.results.insert_results([make_result("r1"), make_result("r2")]) == 2
        assert len(seeded_store.query_results()) == 2


class TestMetadataPolicy:
    def _store(self, policy: MetadataPolicy, version_data: dict[str, Any], metric_data):
        store = CanonicalMetricStore(Settings(database_path=None, metadata_policy=policy))
        store.init_schema()
        store.create_metric(metric_data)
        store.create_version(
            {
                **version_data,
                "required_metadata_fields": ["calculation_date"],
                "metadata_schema": {"calculation_method": ["weighted_average"]},
            }
        )
        return store

    def test_strict_rejects(self, version_data, metric_data, make_result: MakeResult):
        """Strict policy rejects results missing required metadata."""
        with self._store(MetadataPolicy.STRICT, version_data, metric_data) as store:
            with pytest.raises(ValidationError, match="calculation_date"):
                store.insert_result(make_result("r1"))
            with pytest.raises(ValidationError, match="unexpected"):
                store.insert_result(
                    make_result(
                        "r2",
                        result_metadata={
                            "calculation_date": "2024-06-01",
                            "calculation_method": "simple_average",
                        },
                    )
                )
            store.insert_result(
                make_result(
                    "r3",
                    result_metadata={
                        "calculation_date": "2024-06-01",
                        "calculation_method": "weighted_average",
                    },
                )
            )
            assert [r.result_key for r in store.query_results()] == ["r3"]

    def test_advisory_warns(self, version_data, metric_data, make_result: MakeResult, caplog):
        """Advisory policy writes the row and logs a warning."""
        with self._store(MetadataPolicy.ADVISORY, version_data, metric_data) as store:
            with caplog.at_level(logging.WARNING, logger="metricledger"):
                store.insert_result(make_result("r1"))
            assert store.results.get_result("r1") is not None
        assert "calculation_date" in caplog.text

    def test_grain_key_satisfies_required_field(
        self, version_data, metric_data, make_result: MakeResult
    ):
        """A required field present in grain_keys counts as present."""
        with self._store(MetadataPolicy.STRICT, version_data, metric_data) as store:
            row = make_result("r1")
            row["grain_keys"]["calculation_date"] = "2024-06-01"
            store.insert_result(row)

    def test_off_skips_check(self, version_data, metric_data, make_result: MakeResult):
        """Policy off accepts anything."""
        with self._store(MetadataPolicy.OFF, version_data, metric_data) as store:
            store.insert_result(make_result("r1"))
            assert store.results.get_result("r1") is not None


@pytest.fixture
def populated_store(seeded_store: CanonicalMetricStore, make_result: MakeResult):
    """mv1 results for two orgs and several entities, plus a second version."""
    seeded_store.create_version(
        {
            "metric_version_key": "mv2",
            "metric_key": "total_ar",
            "version_number": "v2.0",
            "metric_version_name": "Total AR - Net",
            "metric_version_description": "Net of adjustments",
            "domain": "Financial",
            "result_type": "currency",
            "steward": "Revenue Cycle Manager",
            "developer": "Analytics",
        }
    )
    rows = [
        make_result("a1", org_id="A", entity_id="B", calculated_at=datetime(2024, 1, 1)),
        make_result("a2", org_id="A", entity_id="B", calculated_at=datetime(2024, 3, 1)),
        make_result("a3", org_id="A", entity_id="C", calculated_at=datetime(2024, 2, 1)),
        make_result("b1", org_id="B", entity_id="B", calculated_at=datetime(2024, 2, 1)),
        make_result("a4", org_id="A", entity_id=None, calculated_at=datetime(2024, 4, 1)),
        make_result(
            "a5",
            org_id="A",
            entity_id="B",
            metric_version_key="mv2",
            calculated_at=datetime(2024, 5, 1),
        ),
    ]
    rows[1]["grain_keys"]["payer"] = "medicare"
    seeded_store.results.insert_results(rows)
    return seeded_store


class TestQueries:
    def test_no_filter_returns_all(self, populated_store: CanonicalMetricStore):
        """An empty query returns every row, newest first."""
        keys = [r.result_key for r in populated_store.query_results()]
        assert keys == ["a5", "a4", "a2", "a3", "b1", "a1"]

    def test_and_semantics(self, populated_store: CanonicalMetricStore):
        """Every provided filter must match."""
        results = populated_store.query_results(org_id="A", entity_id="B", metric_version_key="mv1")
        assert [r.result_key for r in results] == ["a2", "a1"]

    def test_query_model(self, populated_store: CanonicalMetricStore):
        """ResultQuery works the same as keyword filters."""
        results = populated_store.results.query_results(ResultQuery(org_id="B"))
        assert [r.result_key for r in results] == ["b1"]

    def test_by_grain_precision(self, populated_store: CanonicalMetricStore):
        """query_by_grain matches every given key and ignores extra dimensions."""
        results = populated_store.query_by_grain({"org_id": "A", "entity_id": "B"})
        assert {r.result_key for r in results} == {"a1", "a2", "a5"}
        for result in results:
            assert result.grain_keys["org_id"] == "A"
            assert result.grain_keys["entity_id"] == "B"

    def test_by_grain_extra_dimension(self, populated_store: CanonicalMetricStore):
        """Filtering on a non-standard dimension works."""
        results = populated_store.query_by_grain({"payer": "medicare"})
        assert [r.result_key for r in results] == ["a2"]

    def test_by_grain_bad_dimension(self, populated_store: CanonicalMetricStore):
        """Dimension names that aren't identifiers are rejected."""
        with pytest.raises(ValidationError):
            populated_store.query_by_grain({"org_id') OR 1=1 --": "A"})

    def test_latest_results(self, populated_store: CanonicalMetricStore):
        """Latest results are newest first and limited."""
        latest = populated_store.latest_results("mv1", org_id="A", limit=2)
        assert [r.result_key for r in latest] == ["a4", "a2"]

    def test_latest_results_default_limit(
        self, seeded_store: CanonicalMetricStore, make_result: MakeResult
    ):
        """Without a limit, latest_limit from settings applies."""
        seeded_store.results.insert_results(
            [make_result(f"r{i:02d}", calculated_at=datetime(2024, 1, i + 1)) for i in range(12)]
        )
        latest = seeded_store.latest_results("mv1")
        assert len(latest) == 10
        assert latest[0].result_key == "r11"

    def test_latest_results_bad_limit(self, seeded_store: CanonicalMetricStore):
        """A zero or negative limit is a ValidationError, not a silent default."""
        for limit in (0, -1):
            with pytest.raises(ValidationError, match="limit"):
                seeded_store.latest_results("mv1", limit=limit)

    def test_empty_org_is_rejected(self, populated_store: CanonicalMetricStore):
        """org_id="" never widens a query to every org."""
        with pytest.raises(ValidationError, match="org_id"):
            populated_store.query_results(org_id="")
        with pytest.raises(ValidationError, match="org_id"):
            populated_store.latest_results("mv1", org_id="")
        with pytest.raises(ValidationError, match="org_id"):
            populated_store.list_staging(org_id="")


class TestHierarchy:
    @pytest.fixture
    def chain_store(self, populated_store: CanonicalMetricStore, make_result: MakeResult):
        """mv2 result a5 is built from a2, which is built from a1 (two hops)."""
        populated_store.create_lineage("a5", "a2", Decimal("0.5"))
        populated_store.create_lineage("a2", "a1")
        return populated_store

    def test_one_hop(self, chain_store: CanonicalMetricStore):
        """get_hierarchy returns base results plus exactly one lineage hop."""
        keys = {r.result_key for r in chain_store.get_hierarchy("mv2")}
        assert keys == {"a5", "a2"}

    def test_one_hop_ignores_second_hop_edges(self, chain_store: CanonicalMetricStore):
        """Edges hanging off a neighbour, not a base result, are not followed."""
        chain_store.create_lineage("b1", "a1")
        keys = {r.result_key for r in chain_store.get_hierarchy("mv2")}
        assert "b1" not in keys

    def test_closure(self, chain_store: CanonicalMetricStore):
        """The closure variant follows lineage all the way."""
        keys = {r.result_key for r in chain_store.get_hierarchy("mv2", closure=True)}
        assert keys == {"a5", "a2", "a1"}

    def test_closure_handles_cycles(self, chain_store: CanonicalMetricStore):
        """A lineage cycle doesn't loop forever."""
        chain_store.create_lineage("a1", "a5")
        keys = {r.result_key for r in chain_store.get_hierarchy("mv2", closure=True)}
        assert keys == {"a5", "a2", "a1"}

    def test_no_results(self, seeded_store: CanonicalMetricStore):
        """A version without results has an empty hierarchy."""
        assert seeded_store.get_hierarchy("mv1") == []
        assert seeded_store.get_hierarchy("mv1", closure=True) == []


class TestSummary:
    def test_metrics_summary(self, populated_store: CanonicalMetricStore):
        """One row per active version with the org's latest value."""
        populated_store.create_metric(
            {"metric_key": "denials", "metric": "Denials", "metric_description": "Denials"}
        )
        populated_store.create_version(
            {
                "metric_version_key": "denials_v1",
                "metric_key": "denials",
                "version_number": "v1.0",
                "metric_version_name": "Denials",
                "metric_version_description": "Denials",
                "domain": "Clinical",
                "result_type": "percentage",
                "steward": "Clinical Director",
                "developer": "Analytics",
            }
        )

        summary = {row.metric_version_key: row for row in populated_store.metrics_summary("A")}
        assert set(summary) == {"mv1", "mv2", "denials_v1"}
        assert summary["mv1"].grain_keys == {"org_id": "A"}
        assert summary["mv1"].calculated_at == datetime(2024, 4, 1)
        assert summary["mv2"].latest_value == NumericValue(value=Decimal("1000"))
        assert summary["denials_v1"].latest_value is None


class TestStaging:
    def test_insert_and_list(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """Staged rows are listed by version and org."""
        seeded_store.insert_staging(make_result("s1", org_id="A"))
        seeded_store.insert_staging(make_result("s2", org_id="B"))

        assert {r.result_key for r in seeded_store.list_staging("mv1")} == {"s1", "s2"}
        assert [r.result_key for r in seeded_store.list_staging("mv1", org_id="B")] == ["s2"]
        assert seeded_store.query_results() == []

    def test_staging_validates(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """Staging applies the same rules as results."""
        with pytest.raises(ForeignKeyError):
            seeded_store.insert_staging(make_result("s1", metric_version_key="missing"))
        with pytest.raises(ValidationError):
            seeded_store.insert_staging(make_result("s1", value=None))

    def test_discard_one(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """A single staged row can be discarded."""
        seeded_store.insert_staging(make_result("s1"))
        seeded_store.insert_staging(make_result("s2"))

        discarded = seeded_store.results.discard_staging("s1")
        assert discarded.result_key == "s1"
        assert [r.result_key for r in seeded_store.list_staging()] == ["s2"]

        with pytest.raises(NotFoundError):
            seeded_store.results.discard_staging("s1")

    def test_clear_is_idempotent(self, seeded_store: CanonicalMetricStore, make_result: MakeResult):
        """Clearing twice returns 0 the second time."""
        seeded_store.insert_staging(make_result("s1"))
        seeded_store.insert_staging(make_result("s2"))

        assert seeded_store.clear_staging("mv1") == 2
        assert seeded_store.clear_staging("mv1") == 0
        assert seeded_store.list_staging("mv1") == []

    def test_clear_scoped(self, populated_store: CanonicalMetricStore, make_result: MakeResult):
        """Clearing one version leaves other versions staged."""
        populated_store.insert_staging(make_result("s1"))
        populated_store.insert_staging(make_result("s2", metric_version_key="mv2"))

        assert populated_store.clear_staging("mv1") == 1
        assert [r.result_key for r in populated_store.list_staging()] == ["s2"]
        assert populated_store.clear_staging() == 1

    def test_clear_empty_key(self, populated_store: CanonicalMetricStore, make_result: MakeResult):
        """An empty version key is rejected instead of clearing every version."""
        populated_store.insert_staging(make_result("s1"))
        populated_store.insert_staging(make_result("s2", metric_version_key="mv2"))

        with pytest.raises(ValidationError):
            populated_store.clear_staging("")
        with pytest.raises(ValidationError):
            populated_store.results.clear_staging("")
        assert {r.result_key for r in populated_store.list_staging()} == {"s1", "s2"}


def test_results_are_result_models(populated_store: CanonicalMetricStore):
    """Query helpers hand back Result models with tagged values."""
    for result in populated_store.query_results():
        assert isinstance(result, Result)
        assert isinstance(result.value, NumericValue)
