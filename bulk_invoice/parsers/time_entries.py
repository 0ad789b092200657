"""Time entry loader.

Accepts rows in two shapes:
  Flat (JSON store):
    id, project_id, project_name, customer_id, customer_name,
    personnel_id, personnel_name, hours, entry_date, invoice_id, invoiced_at
  Nested (backend select with joins):
    id, project_id, personnel_id, user_id, hours, entry_date, invoice_id,
    projects: {name, customer_id, customers: {name}},
    personnel: {first_name, last_name}, profiles: {first_name, last_name}
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Optional

from bulk_invoice.models import StrictValidationError, TimeEntry


def _parse_date_flexible(value: Any) -> date:
    """Parse ISO dates, tolerating a trailing time part."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()

    formats = [
        "%Y-%m-%d",      # 2026-01-10
        "%m/%d/%Y",      # 01/10/2026
    ]
    for fmt in formats:
        try:
            return datetime.strptime(text[:10], fmt).date()
        except ValueError:
            continue

    raise ValueError(f"Cannot parse date: '{value}'")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        hours = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid hours value: {value!r}") from None
    if not hours.is_finite():
        raise ValueError(f"Invalid hours value: {value!r} is not a finite number")
    return hours


def _full_name(person: Optional[dict]) -> Optional[str]:
    if not person:
        return None
    name = f"{person.get('first_name') or ''} {person.get('last_name') or ''}".strip()
    return name or None


def parse_time_entry(row: dict) -> TimeEntry:
    """Convert one row (flat or nested) into a ``TimeEntry``."""
    project = row.get("projects") or {}
    customer = project.get("customers") or {}

    personnel_name = (
        row.get("personnel_name")
        or _full_name(row.get("personnel"))
        or _full_name(row.get("profiles"))
        or "Unknown"
    )

    return TimeEntry(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        hours=_to_decimal(row.get("hours")),
        entry_date=_parse_date_flexible(row["entry_date"]),
        project_name=row.get("project_name") or project.get("name") or "Unknown Project",
        customer_id=row.get("customer_id") or project.get("customer_id") or None,
        customer_name=row.get("customer_name") or customer.get("name") or "Unknown Customer",
        personnel_id=row.get("personnel_id") or None,
        personnel_name=personnel_name,
        invoice_id=row.get("invoice_id") or None,
        invoiced_at=_parse_datetime(row.get("invoiced_at")),
    )


def load_time_entries(rows: Iterable[dict]) -> list[TimeEntry]:
    """Parse all rows, collecting every bad row before failing."""
    errors: list[str] = []
    entries: list[TimeEntry] = []
    for index, row in enumerate(rows):
        try:
            entries.append(parse_time_entry(row))
        except KeyError as e:
            errors.append(f"Row {index}: missing field {e}")
        except ValueError as e:
            errors.append(f"Row {index} ({row.get('id', '?')}): {e}")

    if errors:
        raise StrictValidationError(errors)
    return entries


def load_time_entries_file(path: str | Path) -> list[TimeEntry]:
    """Read entries from a JSON file holding a list or a ``{"time_entries": [...]}`` store."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    rows = data.get("time_entries", []) if isinstance(data, dict) else data
    return load_time_entries(rows)
