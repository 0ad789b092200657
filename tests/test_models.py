"""Tests for canonical data models."""

import pytest
from decimal import Decimal
from datetime import date

from bulk_invoice.models import (
    BracketTotal,
    ConcurrencyConflictError,
    CustomerGroup,
    LineItem,
    LineItemType,
    RateBracket,
    StrictValidationError,
    TimeEntry,
)


def _make_item(total: str, selected: bool = True, type_=LineItemType.REGULAR) -> LineItem:
    return LineItem(
        bracket_id="br-1",
        type=type_,
        product_name="Foreman - Regular Time",
        description="desc",
        hours=Decimal("1"),
        rate=Decimal(total),
        total=Decimal(total),
        selected=selected,
    )


class TestRateBracket:
    def test_default_multiplier(self):
        b = RateBracket(id="br-1", name="Foreman", bill_rate=Decimal("50"))
        assert b.overtime_multiplier == Decimal("1.5")
        assert b.overtime_rate == Decimal("75")

    def test_multiplier_below_one_raises(self):
        with pytest.raises(ValueError, match=">= 1.0"):
            RateBracket(id="br-1", name="Foreman", bill_rate=Decimal("50"), overtime_multiplier=Decimal("0.9"))

    def test_negative_rate_raises(self):
        with pytest.raises(ValueError, match="must not be negative"):
            RateBracket(id="br-1", name="Foreman", bill_rate=Decimal("-1"))


class TestTimeEntry:
    def test_is_invoiced(self):
        entry = TimeEntry(id="e1", project_id="p1", hours=Decimal("8"), entry_date=date(2026, 1, 12))
        assert not entry.is_invoiced
        assert TimeEntry(
            id="e2", project_id="p1", hours=Decimal("8"), entry_date=date(2026, 1, 12), invoice_id="inv-1",
        ).is_invoiced


class TestBracketTotal:
    def test_costs(self):
        total = BracketTotal(
            bracket=RateBracket(id="br-1", name="Foreman", bill_rate=Decimal("50")),
            regular_hours=Decimal("40"),
            overtime_hours=Decimal("5"),
        )
        assert total.total_hours == Decimal("45")
        assert total.regular_cost == Decimal("2000.00")
        assert total.overtime_cost == Decimal("375.00")
        assert total.total_cost == Decimal("2375.00")


class TestCustomerGroup:
    def test_total_billable_counts_selected_items_only(self):
        group = CustomerGroup(
            customer_id="c1",
            customer_name="Acme",
            line_items=(_make_item("100"), _make_item("50", selected=False)),
        )
        assert group.total_billable == Decimal("100")
        assert group.is_submittable

    def test_not_submittable_without_selected_items(self):
        group = CustomerGroup(
            customer_id="c1",
            customer_name="Acme",
            line_items=(_make_item("100", selected=False),),
        )
        assert group.total_billable == Decimal("0")
        assert not group.is_submittable

    def test_rate_bracket_issues_flag(self):
        group = CustomerGroup(customer_id="c1", customer_name="Acme", personnel_without_brackets=(("p1", "Ann"),))
        assert group.has_rate_bracket_issues


class TestErrors:
    def test_strict_validation_message(self):
        e = StrictValidationError(["err1", "err2"])
        assert "2 error(s)" in str(e)
        assert "err1" in str(e)
        assert e.errors == ["err1", "err2"]

    def test_concurrency_conflict_lists_entries(self):
        e = ConcurrencyConflictError(["e1", "e2"])
        assert e.entry_ids == ["e1", "e2"]
        assert "e1, e2" in str(e)
        assert "2 time entries were already invoiced" in str(e)
