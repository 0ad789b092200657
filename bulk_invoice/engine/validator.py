"""Strict validation of time entries.

Runs before grouping when strict mode is on; any finding stops the build.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from bulk_invoice.models import StrictValidationError, TimeEntry


def validate_entries(entries: list[TimeEntry]) -> list[TimeEntry]:
    """Validate all time entries.

    Returns the entries unchanged if every check passes.
    """
    errors: list[str] = []

    if not entries:
        errors.append("No time entries selected for invoicing")
        raise StrictValidationError(errors)

    seen: set[str] = set()
    for entry in entries:
        who = entry.personnel_name if entry.personnel_id else "unassigned"

        if entry.id in seen:
            errors.append(f"Duplicate time entry id {entry.id}")
        seen.add(entry.id)

        if not entry.hours.is_finite():
            errors.append(f"{who} on {entry.entry_date}: hours is not finite (entry {entry.id})")
            continue

        if entry.hours < 0:
            errors.append(f"{who} on {entry.entry_date}: negative hours={entry.hours} (entry {entry.id})")

        if entry.hours > 24:
            errors.append(f"{who} on {entry.entry_date}: hours={entry.hours} > 24 (entry {entry.id})")

    # --- Per-worker-per-date aggregation ---
    daily_totals: dict[tuple[str, object], Decimal] = defaultdict(Decimal)
    names: dict[str, str] = {}
    for entry in entries:
        if not entry.personnel_id or not entry.hours.is_finite():
            continue
        daily_totals[(entry.personnel_id, entry.entry_date)] += entry.hours
        names[entry.personnel_id] = entry.personnel_name

    for (personnel_id, dt), total in daily_totals.items():
        if total > 24:
            errors.append(
                f"{names[personnel_id]} on {dt}: aggregated daily total={total} > 24 across all projects"
            )

    if errors:
        raise StrictValidationError(errors)

    return entries
