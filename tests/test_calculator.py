"""Tests for per-bracket regular/overtime hour allocation."""

import pytest
from decimal import Decimal
from datetime import date, timedelta

from bulk_invoice.engine.calculator import allocate_hours
from bulk_invoice.engine.grouping import group_entries
from bulk_invoice.engine.hours_splitter import PerWeekOvertimePolicy
from bulk_invoice.engine.rates import resolve_rates
from bulk_invoice.models import RateBracket, TimeEntry

MONDAY = date(2026, 1, 12)

FOREMAN = RateBracket(id="br-f", name="Foreman", bill_rate=Decimal("50"))
LABORER = RateBracket(id="br-l", name="Laborer", bill_rate=Decimal("40"))


def _make_entry(id, personnel_id, hours, dt=MONDAY, project_id="proj-1", customer_id="cust-1") -> TimeEntry:
    return TimeEntry(
        id=id,
        project_id=project_id,
        hours=Decimal(hours),
        entry_date=dt,
        project_name=project_id,
        customer_id=customer_id,
        customer_name=customer_id,
        personnel_id=personnel_id,
        personnel_name=personnel_id,
    )


def _week(prefix, personnel_id, hours, days=5, start=MONDAY, **kwargs):
    return [
        _make_entry(f"{prefix}{n}", personnel_id, hours, start + timedelta(days=n), **kwargs)
        for n in range(days)
    ]


def _allocate(entries, lookup, threshold="40", policy=None):
    groups = resolve_rates(group_entries(entries), lookup)
    return allocate_hours(groups, Decimal(threshold), policy)


class TestAllocateHours:
    def test_two_workers_one_over_threshold(self):
        entries = _week("a", "p-a", "9") + _week("b", "p-b", "6")
        lookup = {"proj-1-p-a": FOREMAN, "proj-1-p-b": LABORER}
        (group,) = _allocate(entries, lookup)

        foreman, laborer = group.bracket_totals
        assert foreman.bracket == FOREMAN
        assert (foreman.regular_hours, foreman.overtime_hours) == (Decimal("40"), Decimal("5"))
        assert (laborer.regular_hours, laborer.overtime_hours) == (Decimal("30"), Decimal("0"))
        assert foreman.total_cost + laborer.total_cost == Decimal("3575.00")

    def test_hours_conserved(self):
        entries = _week("a", "p-a", "9.25") + _week("b", "p-b", "11")
        lookup = {"proj-1-p-a": FOREMAN, "proj-1-p-b": LABORER}
        (group,) = _allocate(entries, lookup)
        assert group.regular_hours + group.overtime_hours == group.total_hours

    def test_threshold_exactly_met_has_no_overtime(self):
        (group,) = _allocate(_week("a", "p-a", "8"), {"proj-1-p-a": FOREMAN})
        assert group.overtime_hours == Decimal("0")
        assert group.regular_hours == Decimal("40")

    def test_worker_pooled_across_projects(self):
        # 30h on proj-1 first, then 20h on proj-2: threshold is crossed on proj-2
        entries = (
            _week("a", "p-a", "10", days=3, project_id="proj-1")
            + _week("b", "p-a", "10", days=2, start=MONDAY + timedelta(days=3), project_id="proj-2")
        )
        lookup = {"proj-1-p-a": FOREMAN, "proj-2-p-a": LABORER}
        (group,) = _allocate(entries, lookup)

        foreman, laborer = group.bracket_totals
        assert (foreman.regular_hours, foreman.overtime_hours) == (Decimal("30"), Decimal("0"))
        assert (laborer.regular_hours, laborer.overtime_hours) == (Decimal("10"), Decimal("10"))

    def test_shared_bracket_accumulates_workers(self):
        entries = _week("a", "p-a", "9") + _week("b", "p-b", "9")
        lookup = {"proj-1-p-a": FOREMAN, "proj-1-p-b": FOREMAN}
        (group,) = _allocate(entries, lookup)

        (total,) = group.bracket_totals
        assert total.regular_hours == Decimal("80")
        assert total.overtime_hours == Decimal("10")
        assert total.personnel_ids == ("p-a", "p-b")

    def test_customers_are_independent(self):
        entries = (
            _week("a", "p-a", "6", customer_id="cust-1")
            + _week("b", "p-a", "6", customer_id="cust-2")
        )
        lookup = {"proj-1-p-a": FOREMAN}
        groups = _allocate(entries, lookup)
        assert [g.overtime_hours for g in groups] == [Decimal("0"), Decimal("0")]

    def test_negative_correction_entry(self):
        entries = [
            _make_entry("a0", "p-a", "50"),
            _make_entry("a1", "p-a", "-5", MONDAY + timedelta(days=1)),
        ]
        (group,) = _allocate(entries, {"proj-1-p-a": FOREMAN})
        (foreman,) = group.bracket_totals
        assert (foreman.regular_hours, foreman.overtime_hours) == (Decimal("40"), Decimal("5"))
        assert group.total_hours == Decimal("45")

    def test_missing_bracket_contributes_nothing(self):
        entries = _week("a", "p-a", "9") + _week("c", "p-c", "9")
        (group,) = _allocate(entries, {"proj-1-p-a": FOREMAN})
        assert group.personnel_without_brackets == (("p-c", "p-c"),)
        assert group.regular_hours + group.overtime_hours == Decimal("45")

    def test_whole_range_spans_weeks(self):
        entries = _week("a", "p-a", "9") + _week("b", "p-a", "2", start=MONDAY + timedelta(days=7))
        (group,) = _allocate(entries, {"proj-1-p-a": FOREMAN})
        (total,) = group.bracket_totals
        assert total.period_key is None
        assert (total.regular_hours, total.overtime_hours) == (Decimal("40"), Decimal("15"))

    def test_per_week_policy_splits_each_week(self):
        entries = _week("a", "p-a", "9") + _week("b", "p-a", "2", start=MONDAY + timedelta(days=7))
        (group,) = _allocate(entries, {"proj-1-p-a": FOREMAN}, policy=PerWeekOvertimePolicy())
        first, second = group.bracket_totals
        assert first.period_key == MONDAY
        assert (first.regular_hours, first.overtime_hours) == (Decimal("40"), Decimal("5"))
        assert second.period_key == MONDAY + timedelta(days=7)
        assert (second.regular_hours, second.overtime_hours) == (Decimal("10"), Decimal("0"))

    def test_zero_threshold_bills_everything_as_overtime(self):
        (group,) = _allocate(_week("a", "p-a", "8", days=1), {"proj-1-p-a": FOREMAN}, threshold="0")
        assert group.overtime_hours == Decimal("8")

    def test_negative_threshold_raises(self):
        with pytest.raises(ValueError, match="must not be negative"):
            _allocate(_week("a", "p-a", "8"), {"proj-1-p-a": FOREMAN}, threshold="-1")
