"""Regular/overtime hours splitting.

Business rules:
- A worker's hours are split against a single weekly overtime threshold.
- The first ``threshold`` hours are regular, everything above is overtime.
- Which hours are pooled together is decided by an overtime policy:
  - WholeRangeOvertimePolicy: every entry in the billed range is pooled and
    the threshold is applied once, even if the range spans several weeks.
  - PerWeekOvertimePolicy: entries are pooled per Monday-start week and the
    threshold is applied to each week separately.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Protocol, Sequence, TypeVar

ZERO = Decimal("0")


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def week_end(day: date) -> date:
    """Sunday of the week containing ``day``."""
    return week_start(day) + timedelta(days=6)


def split_hours(total: Decimal, threshold: Decimal) -> tuple[Decimal, Decimal]:
    """Split total hours into (regular, overtime) against the threshold."""
    regular = min(total, threshold)
    overtime = max(ZERO, total - threshold)
    return regular, overtime


class Dated(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def entry_date(self) -> date: ...

    @property
    def hours(self) -> Decimal: ...


T = TypeVar("T", bound=Dated)


def allocate_hours_in_order(
    items: Sequence[T],
    threshold: Decimal,
) -> list[tuple[T, Decimal, Decimal]]:
    """Split pooled hours per item, in chronological order (entry date, then id).

    The overtime is ``split_hours`` of the summed total and is taken from the
    latest positive entries backwards; everything else is regular. With only
    positive hours this means the first ``threshold`` hours are regular.
    Negative correction entries stay regular, so the sums always match
    ``split_hours(total, threshold)``.
    """
    ordered = sorted(items, key=lambda i: (i.entry_date, i.id))
    total = sum((i.hours for i in ordered), ZERO)
    _, remaining_overtime = split_hours(total, threshold)

    overtime_by_index: dict[int, Decimal] = {}
    for index in range(len(ordered) - 1, -1, -1):
        if remaining_overtime <= 0:
            break
        hours = ordered[index].hours
        if hours <= 0:
            continue
        take = min(hours, remaining_overtime)
        overtime_by_index[index] = take
        remaining_overtime -= take

    result = []
    for index, item in enumerate(ordered):
        overtime = overtime_by_index.get(index, ZERO)
        result.append((item, item.hours - overtime, overtime))
    return result


class OvertimePolicy(Protocol):
    name: str

    def periods(self, items: Sequence[T]) -> list[tuple[Optional[date], list[T]]]:
        """Partition one worker's items into buckets that share a threshold."""
        ...


class WholeRangeOvertimePolicy:
    """Apply the threshold once to the summed hours of the whole range."""
    name = "whole_range"

    def periods(self, items):
        if not items:
            return []
        return [(None, list(items))]


class PerWeekOvertimePolicy:
    """Apply the threshold to each Monday-start week separately."""
    name = "per_week"

    def periods(self, items):
        by_week: dict[date, list] = defaultdict(list)
        for item in items:
            by_week[week_start(item.entry_date)].append(item)
        return sorted(by_week.items())


POLICIES = {
    WholeRangeOvertimePolicy.name: WholeRangeOvertimePolicy,
    PerWeekOvertimePolicy.name: PerWeekOvertimePolicy,
}


def get_policy(name: str) -> OvertimePolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown overtime policy '{name}', expected one of: {', '.join(sorted(POLICIES))}"
        ) from None
