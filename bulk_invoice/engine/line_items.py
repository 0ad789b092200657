"""Line item synthesis and review edits.

Turns bracket totals into editable invoice line items, and applies the
operator's review edits (selection toggles, description text) by returning
updated customer groups.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from bulk_invoice.engine.hours_splitter import week_end, week_start
from bulk_invoice.models import (
    BracketTotal,
    CustomerGroup,
    LineItem,
    LineItemType,
    to_cents,
)

ZERO = Decimal("0")

LineItemKey = tuple[str, Optional[date], LineItemType]


def _day(d: date) -> str:
    return f"{d:%b} {d.day}"


def week_range_label(dates: Iterable[date]) -> str:
    """Label spanning the Monday-start weeks of the earliest and latest date."""
    dates = list(dates)
    if not dates:
        return ""
    start = week_start(min(dates))
    end = week_end(max(dates))
    if start == week_start(end):
        return f"Week of {_day(start)} – {_day(end)}, {end.year}"
    if start.year == end.year:
        return f"Weeks of {_day(start)} – {_day(end)}, {end.year}"
    return f"Weeks of {_day(start)}, {start.year} – {_day(end)}, {end.year}"


def _multiplier_text(multiplier: Decimal) -> str:
    return format(multiplier.normalize(), "f")


def line_items_for_bracket(total: BracketTotal, label: str) -> list[LineItem]:
    """Regular and/or overtime items for one bracket total; none when it has no hours."""
    bracket = total.bracket
    items = []
    if total.regular_hours > 0:
        rate = bracket.bill_rate
        items.append(LineItem(
            bracket_id=bracket.id,
            period_key=total.period_key,
            type=LineItemType.REGULAR,
            product_name=f"{bracket.name} - Regular Time",
            description=(
                f"{bracket.name} - Regular Time, {label}\n"
                f"{total.regular_hours:.1f} hours @ ${rate:.2f}/hr"
            ),
            hours=total.regular_hours,
            rate=rate,
            total=to_cents(total.regular_hours * rate),
        ))
    if total.overtime_hours > 0:
        rate = bracket.overtime_rate
        items.append(LineItem(
            bracket_id=bracket.id,
            period_key=total.period_key,
            type=LineItemType.OVERTIME,
            product_name=f"{bracket.name} - Overtime",
            description=(
                f"{bracket.name} - Overtime, {label}\n"
                f"{total.overtime_hours:.1f} hours @ ${rate:.2f}/hr "
                f"({_multiplier_text(bracket.overtime_multiplier)}x rate)"
            ),
            hours=total.overtime_hours,
            rate=rate,
            total=to_cents(total.overtime_hours * rate),
        ))
    return items


def synthesize_customer(group: CustomerGroup) -> CustomerGroup:
    # One label per customer, from its earliest and latest entry overall
    label = week_range_label(e.entry_date for e in group.entries)
    items: list[LineItem] = []
    for total in group.bracket_totals:
        period_label = label if total.period_key is None else week_range_label([total.period_key])
        items.extend(line_items_for_bracket(total, period_label))
    return replace(
        group,
        line_items=tuple(items),
        week_label=label,
        selected=group.selected and len(items) > 0,
    )


def synthesize_line_items(groups: list[CustomerGroup]) -> list[CustomerGroup]:
    return [synthesize_customer(g) for g in groups]


# --- Review edits ---

def toggle_customer(group: CustomerGroup) -> CustomerGroup:
    """Flip the customer's selection; a customer without line items stays unselected."""
    if not group.line_items:
        return replace(group, selected=False)
    return replace(group, selected=not group.selected)


def toggle_line_item(group: CustomerGroup, key: LineItemKey) -> CustomerGroup:
    items = tuple(
        replace(li, selected=not li.selected) if li.key == key else li
        for li in group.line_items
    )
    return replace(group, line_items=items)


def update_line_item_description(group: CustomerGroup, key: LineItemKey, description: str) -> CustomerGroup:
    """Replace the free-text description only; hours, rate and total are untouched."""
    items = tuple(
        replace(li, description=description) if li.key == key else li
        for li in group.line_items
    )
    return replace(group, line_items=items)


def selected_customers(groups: Iterable[CustomerGroup]) -> list[CustomerGroup]:
    return [g for g in groups if g.is_submittable]


def review_totals(groups: Iterable[CustomerGroup]) -> dict:
    """Hours, billable amount and customer count of what would be invoiced."""
    hours = ZERO
    billable = ZERO
    count = 0
    for group in selected_customers(groups):
        hours += sum((li.hours for li in group.selected_line_items), ZERO)
        billable += group.total_billable
        count += 1
    return {"total_hours": hours, "total_billable": billable, "customer_count": count}
