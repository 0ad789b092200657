"""Tests for rate bracket lookup and resolution."""

import pytest
from decimal import Decimal
from datetime import date

from bulk_invoice.engine.grouping import group_entries
from bulk_invoice.engine.rates import (
    build_rate_lookup,
    collect_lookup_ids,
    fetch_rate_lookup,
    rate_key,
    resolve_rates,
)
from bulk_invoice.models import RateBracket, RateLookupError, TimeEntry


def _make_entry(id: str, personnel_id="p-a", project_id="proj-1", name="Ann") -> TimeEntry:
    return TimeEntry(
        id=id,
        project_id=project_id,
        hours=Decimal("8"),
        entry_date=date(2026, 1, 12),
        project_name="Tower",
        customer_id="cust-1",
        customer_name="Acme",
        personnel_id=personnel_id,
        personnel_name=name,
    )


def _make_row(personnel_id="p-a", project_id="proj-1", **bracket) -> dict:
    bracket.setdefault("id", "br-1")
    bracket.setdefault("name", "Foreman")
    bracket.setdefault("bill_rate", 50)
    return {
        "project_id": project_id,
        "personnel_id": personnel_id,
        "status": "active",
        "rate_bracket": bracket,
    }


class _RecordingBackend:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    def fetch_assignments(self, project_ids, personnel_ids, status="active"):
        self.calls.append((project_ids, personnel_ids, status))
        if self.error:
            raise self.error
        return self.rows


class TestBuildRateLookup:
    def test_basic_lookup(self):
        lookup = build_rate_lookup([_make_row(overtime_multiplier=2)])
        bracket = lookup[rate_key("proj-1", "p-a")]
        assert bracket == RateBracket(
            id="br-1", name="Foreman", bill_rate=Decimal("50"), overtime_multiplier=Decimal("2"),
        )

    def test_missing_multiplier_defaults(self):
        lookup = build_rate_lookup([_make_row()])
        assert lookup["proj-1-p-a"].overtime_multiplier == Decimal("1.5")

    def test_zero_multiplier_defaults(self):
        lookup = build_rate_lookup([_make_row(overtime_multiplier=0)])
        assert lookup["proj-1-p-a"].overtime_multiplier == Decimal("1.5")

    def test_custom_default_multiplier(self):
        lookup = build_rate_lookup([_make_row()], default_multiplier=Decimal("2"))
        assert lookup["proj-1-p-a"].overtime_multiplier == Decimal("2")

    def test_missing_bill_rate_bills_zero(self):
        lookup = build_rate_lookup([_make_row(bill_rate=None)])
        assert lookup["proj-1-p-a"].bill_rate == Decimal("0")

    def test_non_billable_bracket_skipped(self):
        assert build_rate_lookup([_make_row(is_billable=False)]) == {}

    def test_row_without_bracket_skipped(self):
        assert build_rate_lookup([{"project_id": "proj-1", "personnel_id": "p-a", "rate_bracket": None}]) == {}

    def test_nested_key_name_accepted(self):
        row = {
            "project_id": "proj-1",
            "personnel_id": "p-a",
            "project_rate_brackets": {"id": "br-9", "name": "Welder", "bill_rate": "62.50"},
        }
        assert build_rate_lookup([row])["proj-1-p-a"].bill_rate == Decimal("62.50")

    def test_multiplier_below_one_raises(self):
        with pytest.raises(RateLookupError, match=">= 1.0"):
            build_rate_lookup([_make_row(overtime_multiplier="0.5")])

    def test_invalid_number_raises(self):
        with pytest.raises(RateLookupError, match="Invalid numeric value"):
            build_rate_lookup([_make_row(bill_rate="abc")])


class TestFetchRateLookup:
    def test_queries_distinct_ids_with_active_status(self):
        backend = _RecordingBackend(rows=[_make_row()])
        entries = [_make_entry("e1"), _make_entry("e2"), _make_entry("e3", personnel_id="p-b")]
        lookup = fetch_rate_lookup(backend, entries)
        assert backend.calls == [(["proj-1"], ["p-a", "p-b"], "active")]
        assert list(lookup) == ["proj-1-p-a"]

    def test_no_workers_skips_backend(self):
        backend = _RecordingBackend()
        assert fetch_rate_lookup(backend, [_make_entry("e1", personnel_id=None)]) == {}
        assert backend.calls == []

    def test_backend_failure_raises_lookup_error(self):
        backend = _RecordingBackend(error=ConnectionError("timeout"))
        with pytest.raises(RateLookupError, match="timeout"):
            fetch_rate_lookup(backend, [_make_entry("e1")])


class TestCollectLookupIds:
    def test_first_seen_order(self):
        entries = [
            _make_entry("e1", personnel_id="p-b", project_id="proj-2"),
            _make_entry("e2", personnel_id="p-a", project_id="proj-1"),
            _make_entry("e3", personnel_id="p-b", project_id="proj-1"),
        ]
        assert collect_lookup_ids(entries) == (["proj-2", "proj-1"], ["p-b", "p-a"])


class TestResolveRates:
    def test_missing_worker_reported_once(self):
        lookup = build_rate_lookup([_make_row()])
        groups = group_entries([
            _make_entry("e1"),
            _make_entry("e2", personnel_id="p-c", name="Cal"),
            _make_entry("e3", personnel_id="p-c", name="Cal"),
        ])
        (group,) = resolve_rates(groups, lookup)
        assert group.personnel_without_brackets == (("p-c", "Cal"),)
        assert [r.bracket is not None for r in group.resolved_entries] == [True, False, False]

    def test_bracket_is_per_project(self):
        lookup = build_rate_lookup([_make_row(project_id="proj-1")])
        groups = group_entries([_make_entry("e1", project_id="proj-2")])
        (group,) = resolve_rates(groups, lookup)
        assert group.has_rate_bracket_issues
