"""Tests for the builder session state machine."""

import json
import pytest
from decimal import Decimal
from datetime import date, datetime, timedelta, timezone

from bulk_invoice.backend import InMemoryBackend, JsonFileBackend
from bulk_invoice.config import Settings
from bulk_invoice.engine.builder import BulkInvoiceBuilder, next_friday
from bulk_invoice.models import BuilderStep, InvalidTransitionError
from bulk_invoice.parsers import load_time_entries

MONDAY = date(2026, 1, 12)
TODAY = date(2026, 1, 19)


def _make_row(id, personnel_id, hours, dt=MONDAY, customer_id="cust-1", customer_name="Acme", invoice_id=None):
    return {
        "id": id,
        "project_id": "proj-1",
        "project_name": "Tower",
        "customer_id": customer_id,
        "customer_name": customer_name,
        "personnel_id": personnel_id,
        "personnel_name": personnel_id,
        "hours": hours,
        "entry_date": dt.isoformat(),
        "invoice_id": invoice_id,
    }


def _week(prefix, personnel_id, hours, start=MONDAY, **kwargs):
    return [_make_row(f"{prefix}{n}", personnel_id, hours, start + timedelta(days=n), **kwargs) for n in range(5)]


ASSIGNMENTS = [
    {
        "project_id": "proj-1",
        "personnel_id": "p-a",
        "status": "active",
        "rate_bracket": {"id": "br-f", "name": "Foreman", "bill_rate": 50, "overtime_multiplier": 1.5},
    },
    {
        "project_id": "proj-1",
        "personnel_id": "p-b",
        "status": "active",
        "rate_bracket": {"id": "br-l", "name": "Laborer", "bill_rate": 40, "overtime_multiplier": 1.5},
    },
]


class BrokenAssignmentsBackend(InMemoryBackend):
    def fetch_assignments(self, project_ids, personnel_ids, status="active"):
        raise ConnectionError("assignments table unavailable")


def _make_builder(rows, backend_cls=InMemoryBackend, **settings):
    backend = backend_cls(time_entries=rows, assignments=ASSIGNMENTS)
    builder = BulkInvoiceBuilder(
        backend,
        Settings(**settings),
        today=TODAY,
        now=lambda: datetime(2026, 1, 19, 12, 0, tzinfo=timezone.utc),
    )
    return builder.open(load_time_entries(backend.fetch_time_entries()))


class TestNextFriday:
    def test_from_monday(self):
        assert next_friday(date(2026, 1, 19)) == date(2026, 1, 23)

    def test_from_friday_is_next_week(self):
        assert next_friday(date(2026, 1, 16)) == date(2026, 1, 23)

    def test_from_saturday(self):
        assert next_friday(date(2026, 1, 17)) == date(2026, 1, 23)


class TestBuilderFlow:
    def test_open_defaults(self):
        builder = _make_builder(_week("a", "p-a", "8"))
        assert builder.step == BuilderStep.CONFIGURE
        assert builder.invoice_date == TODAY
        assert builder.due_date == date(2026, 1, 23)
        assert builder.notes == ""
        assert len(builder.selected_entries) == 5

    def test_open_reports_exclusions(self):
        rows = _week("a", "p-a", "8") + [
            _make_row("x1", "p-a", "8", invoice_id="inv-old"),
            _make_row("x2", "p-a", "8", customer_id=None),
        ]
        builder = _make_builder(rows)
        assert builder.exclusions.already_invoiced == 1
        assert builder.exclusions.no_customer == 1
        assert len(builder.valid_entries) == 5

    def test_full_session(self):
        builder = _make_builder(_week("a", "p-a", "9") + _week("b", "p-b", "6"))
        groups = builder.build()
        assert builder.step == BuilderStep.REVIEW
        assert len(groups) == 1
        assert builder.totals["total_billable"] == Decimal("3575.00")

        results = builder.create_invoices()
        assert builder.step == BuilderStep.RESULTS
        assert [r.success for r in results] == [True]
        assert builder.success_count == 1
        assert builder.total_created == Decimal("3575.00")
        assert builder.total_entries_linked == 10

        invoice = builder.backend.get_invoice(results[0].invoice_id)
        assert invoice["due_date"] == "2026-01-23"

        builder.close()
        assert builder.step == BuilderStep.CLOSED
        assert builder.groups == []
        assert builder.results == []

    def test_second_session_sees_nothing_to_invoice(self):
        builder = _make_builder(_week("a", "p-a", "9"))
        builder.build()
        builder.create_invoices()

        backend = builder.backend
        again = BulkInvoiceBuilder(backend, Settings(), today=TODAY)
        again.open(load_time_entries(backend.fetch_time_entries()))
        assert again.valid_entries == []
        assert again.exclusions.already_invoiced == 5
        assert again.build() == []

    def test_deselected_week_not_built(self):
        rows = _week("a", "p-a", "9") + _week("w", "p-a", "9", start=MONDAY + timedelta(days=7))
        builder = _make_builder(rows)
        builder.toggle_week("proj-1", "2026-01-19")
        (group,) = builder.build()
        assert group.total_hours == Decimal("45")

    def test_deselected_worker_not_built(self):
        builder = _make_builder(_week("a", "p-a", "9") + _week("b", "p-b", "6"))
        builder.toggle_personnel("proj-1", "2026-01-12", "p-b")
        (group,) = builder.build()
        assert [b.bracket.name for b in group.bracket_totals] == ["Foreman"]

    def test_build_failure_stays_in_configure(self):
        builder = _make_builder(_week("a", "p-a", "9"), backend_cls=BrokenAssignmentsBackend)
        assert builder.build() == []
        assert builder.step == BuilderStep.CONFIGURE
        assert "assignments table unavailable" in builder.error

    def test_strict_validation_failure_recorded(self):
        builder = _make_builder([_make_row("a0", "p-a", "30")], strict_validation=True)
        builder.build()
        assert builder.step == BuilderStep.CONFIGURE
        assert "> 24" in builder.error

    def test_back_returns_to_configure(self):
        builder = _make_builder(_week("a", "p-a", "9"))
        builder.build()
        builder.back()
        assert builder.step == BuilderStep.CONFIGURE
        builder.toggle_week("proj-1", "2026-01-12")
        assert builder.selected_entries == []

    def test_per_week_policy_setting(self):
        rows = _week("a", "p-a", "9") + _week("w", "p-a", "9", start=MONDAY + timedelta(days=7))
        builder = _make_builder(rows, overtime_policy="per_week")
        (group,) = builder.build()
        assert group.overtime_hours == Decimal("10")


class TestReviewActions:
    def test_select_only(self):
        rows = _week("a", "p-a", "8") + _week("b", "p-b", "8", customer_id="cust-2", customer_name="Beta")
        builder = _make_builder(rows)
        builder.build()
        builder.select_only(["cust-2"])
        assert [g.customer_id for g in builder.selected_customers] == ["cust-2"]
        (result,) = builder.create_invoices()
        assert result.customer_name == "Beta"

    def test_toggle_line_item_and_description(self):
        builder = _make_builder(_week("a", "p-a", "9"))
        (group,) = builder.build()
        overtime_key = group.line_items[1].key
        builder.toggle_line_item("cust-1", overtime_key)
        builder.update_line_item_description("cust-1", group.line_items[0].key, "Supervision")
        assert builder.totals["total_billable"] == Decimal("2000.00")
        assert builder.groups[0].line_items[0].description == "Supervision"

    def test_unknown_customer_raises(self):
        builder = _make_builder(_week("a", "p-a", "9"))
        builder.build()
        with pytest.raises(KeyError):
            builder.toggle_customer("nobody")


class TestTransitions:
    def test_create_requires_review(self):
        builder = _make_builder(_week("a", "p-a", "8"))
        with pytest.raises(InvalidTransitionError):
            builder.create_invoices()

    def test_toggle_week_requires_configure(self):
        builder = _make_builder(_week("a", "p-a", "8"))
        builder.build()
        with pytest.raises(InvalidTransitionError):
            builder.toggle_week("proj-1", "2026-01-12")

    def test_closed_builder_rejects_build(self):
        builder = _make_builder(_week("a", "p-a", "8"))
        builder.close()
        with pytest.raises(InvalidTransitionError):
            builder.build()


class TestSharedStore:
    def _open_session(self, path):
        backend = JsonFileBackend(path)
        builder = BulkInvoiceBuilder(backend, Settings(), today=TODAY)
        builder.open(load_time_entries(backend.fetch_time_entries()))
        builder.build()
        return builder

    def _write_store(self, tmp_path, rows):
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"time_entries": rows, "assignments": ASSIGNMENTS}), encoding="utf-8")
        return path

    def test_second_session_on_same_entries_conflicts(self, tmp_path):
        path = self._write_store(tmp_path, [_make_row("a0", "p-a", "8")])
        first = self._open_session(path)
        second = self._open_session(path)

        (won,) = first.create_invoices()
        (lost,) = second.create_invoices()

        assert won.success
        assert won.invoice_number == "INV-0001"
        assert not lost.success
        assert lost.conflicting_entry_ids == ["a0"]

        store = JsonFileBackend(path)
        assert [(i["id"], i["number"]) for i in store.invoices] == [(won.invoice_id, "INV-0001")]
        assert store.fetch_time_entries()[0]["invoice_id"] == won.invoice_id

    def test_sessions_on_different_customers_keep_both_invoices(self, tmp_path):
        rows = _week("a", "p-a", "8") + _week("b", "p-b", "8", customer_id="cust-2", customer_name="Beta")
        path = self._write_store(tmp_path, rows)
        first = self._open_session(path)
        second = self._open_session(path)
        first.select_only(["cust-1"])
        second.select_only(["cust-2"])

        (acme,) = first.create_invoices()
        (beta,) = second.create_invoices()

        assert (acme.invoice_number, beta.invoice_number) == ("INV-0001", "INV-0002")
        store = JsonFileBackend(path)
        assert sorted(i["number"] for i in store.invoices) == ["INV-0001", "INV-0002"]
        assert len(store.invoice_line_items) == 2
        assert all(e["invoice_id"] for e in store.fetch_time_entries())
