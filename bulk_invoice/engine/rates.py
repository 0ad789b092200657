"""Rate resolution.

Maps ``(project, worker)`` pairs to the rate bracket of the worker's active
project assignment. Missing pairs are not an error here; they surface later
as a per-customer "missing rate bracket" warning.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from bulk_invoice.config import DEFAULT_OVERTIME_MULTIPLIER
from bulk_invoice.models import (
    CustomerGroup,
    RateBracket,
    RateLookupError,
    ResolvedEntry,
    TimeEntry,
)

logger = logging.getLogger(__name__)

RateLookup = dict[str, RateBracket]


def rate_key(project_id: str, personnel_id: str) -> str:
    return f"{project_id}-{personnel_id}"


def collect_lookup_ids(entries: Iterable[TimeEntry]) -> tuple[list[str], list[str]]:
    """Distinct project ids and worker ids, in first-seen order."""
    project_ids: dict[str, None] = {}
    personnel_ids: dict[str, None] = {}
    for entry in entries:
        project_ids.setdefault(entry.project_id, None)
        if entry.personnel_id:
            personnel_ids.setdefault(entry.personnel_id, None)
    return list(project_ids), list(personnel_ids)


def _decimal(value: Any, default: Decimal) -> Decimal:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise RateLookupError(f"Invalid numeric value in rate bracket: {value!r}") from e


def build_rate_lookup(
    rows: Iterable[dict],
    default_multiplier: Decimal = DEFAULT_OVERTIME_MULTIPLIER,
) -> RateLookup:
    """Build the ``"{project_id}-{personnel_id}"`` -> bracket lookup.

    Rows without a bracket, and brackets flagged ``is_billable = False``,
    are skipped. An unset bill rate bills at 0 and an unset (or zero)
    overtime multiplier falls back to ``default_multiplier``.
    """
    lookup: RateLookup = {}
    for row in rows:
        bracket = row.get("rate_bracket") or row.get("project_rate_brackets")
        personnel_id = row.get("personnel_id")
        project_id = row.get("project_id")
        if not bracket or not personnel_id or not project_id:
            continue
        if bracket.get("is_billable") is False:
            continue

        multiplier = _decimal(bracket.get("overtime_multiplier"), default_multiplier)
        if multiplier == 0:
            multiplier = default_multiplier
        try:
            lookup[rate_key(project_id, personnel_id)] = RateBracket(
                id=str(bracket.get("id") or row.get("rate_bracket_id")),
                name=bracket.get("name") or "Unnamed Bracket",
                bill_rate=_decimal(bracket.get("bill_rate"), Decimal("0")),
                overtime_multiplier=multiplier,
            )
        except ValueError as e:
            raise RateLookupError(str(e)) from e
    return lookup


def fetch_rate_lookup(
    backend,
    entries: Iterable[TimeEntry],
    default_multiplier: Decimal = DEFAULT_OVERTIME_MULTIPLIER,
) -> RateLookup:
    """Fetch active assignments for the entries' projects/workers.

    Any backend failure is raised as ``RateLookupError``; there is no retry.
    """
    entries = list(entries)
    project_ids, personnel_ids = collect_lookup_ids(entries)
    if not project_ids or not personnel_ids:
        return {}

    logger.info(
        "Fetching rate brackets for %d project(s) and %d worker(s)",
        len(project_ids), len(personnel_ids),
    )
    try:
        rows = backend.fetch_assignments(project_ids, personnel_ids, status="active")
    except RateLookupError:
        raise
    except Exception as e:
        logger.error("Rate bracket lookup failed: %s", e)
        raise RateLookupError(f"Failed to load rate brackets: {e}") from e

    lookup = build_rate_lookup(rows, default_multiplier)
    logger.info("Resolved %d rate bracket assignment(s)", len(lookup))
    return lookup


def resolve_entry(entry: TimeEntry, lookup: RateLookup) -> Optional[RateBracket]:
    if not entry.personnel_id:
        return None
    return lookup.get(rate_key(entry.project_id, entry.personnel_id))


def resolve_rates(groups: list[CustomerGroup], lookup: RateLookup) -> list[CustomerGroup]:
    """Attach each entry's bracket and list workers with unresolved entries."""
    resolved_groups = []
    for group in groups:
        resolved = []
        missing: dict[str, str] = {}
        for entry in group.entries:
            bracket = resolve_entry(entry, lookup)
            resolved.append(ResolvedEntry(entry=entry, bracket=bracket))
            if bracket is None and entry.personnel_id:
                missing.setdefault(entry.personnel_id, entry.personnel_name)

        if missing:
            logger.warning(
                "Customer %s has %d worker(s) without a rate bracket",
                group.customer_name, len(missing),
            )
        resolved_groups.append(
            replace(group, resolved_entries=tuple(resolved), personnel_without_brackets=tuple(missing.items()))
        )
    return resolved_groups
