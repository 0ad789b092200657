"""Hour allocation engine.

Splits each worker's hours into regular/overtime and accumulates them per
rate bracket. All arithmetic is done with Decimal precision.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Optional

from bulk_invoice.engine.hours_splitter import (
    OvertimePolicy,
    WholeRangeOvertimePolicy,
    allocate_hours_in_order,
    split_hours,
)
from bulk_invoice.models import (
    BracketTotal,
    CustomerGroup,
    RateBracket,
    ResolvedEntry,
    StrictValidationError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def allocate_customer(
    group: CustomerGroup,
    threshold: Decimal,
    policy: OvertimePolicy,
    errors: list[str],
) -> CustomerGroup:
    """Compute bracket totals for one customer from its resolved entries."""
    # Hours are pooled per worker across every project of the customer
    by_worker: dict[str, list[ResolvedEntry]] = defaultdict(list)
    for item in group.resolved_entries:
        if item.bracket is None or not item.entry.personnel_id:
            continue
        by_worker[item.entry.personnel_id].append(item)

    regular: dict[tuple, Decimal] = defaultdict(Decimal)
    overtime: dict[tuple, Decimal] = defaultdict(Decimal)
    brackets: dict[tuple, RateBracket] = {}
    personnel: dict[tuple, dict[str, None]] = defaultdict(dict)

    for personnel_id, items in by_worker.items():
        for period_key, period_items in policy.periods(items):
            worker_regular = ZERO
            worker_overtime = ZERO
            for item, reg, ot in allocate_hours_in_order(period_items, threshold):
                key = (period_key, item.bracket.id)
                brackets[key] = item.bracket
                regular[key] += reg
                overtime[key] += ot
                personnel[key].setdefault(personnel_id, None)
                worker_regular += reg
                worker_overtime += ot

            # --- Reconciliation against the plain threshold cap ---
            total = sum((i.hours for i in period_items), ZERO)
            expected_regular, expected_overtime = split_hours(total, threshold)
            if (worker_regular, worker_overtime) != (expected_regular, expected_overtime):
                errors.append(
                    f"{group.customer_name}: worker {personnel_id} split "
                    f"{worker_regular}/{worker_overtime} does not match "
                    f"{expected_regular}/{expected_overtime} for {total}h"
                )

    totals = [
        BracketTotal(
            bracket=brackets[key],
            period_key=key[0],
            regular_hours=regular[key],
            overtime_hours=overtime[key],
            personnel_ids=tuple(personnel[key]),
        )
        for key in brackets
    ]
    totals.sort(key=lambda b: (b.period_key or date.min, b.bracket.name.lower()))
    return replace(group, bracket_totals=tuple(totals))


def allocate_hours(
    groups: list[CustomerGroup],
    threshold: Decimal,
    policy: Optional[OvertimePolicy] = None,
) -> list[CustomerGroup]:
    """Allocate regular/overtime hours per bracket for every customer group."""
    if threshold < 0:
        raise ValueError(f"Weekly overtime threshold must not be negative, got {threshold}")
    policy = policy or WholeRangeOvertimePolicy()
    errors: list[str] = []

    allocated = [allocate_customer(g, threshold, policy, errors) for g in groups]

    if errors:
        raise StrictValidationError(errors)

    for group in allocated:
        logger.debug(
            "%s: %s regular / %s overtime hours across %d bracket total(s)",
            group.customer_name, group.regular_hours, group.overtime_hours,
            len(group.bracket_totals),
        )
    return allocated
