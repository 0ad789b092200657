"""Backend collaborators.

``InvoiceBackend`` is the contract the builder needs from the hosted
backend (tables, numbering service). ``InMemoryBackend`` implements it over
plain dicts; ``JsonFileBackend`` persists the same tables to a JSON file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from copy import deepcopy
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional, Protocol

from bulk_invoice.config import DEFAULT_INVOICE_NUMBER_PREFIX
from bulk_invoice.models import BackendError, InvoiceNumberError

logger = logging.getLogger(__name__)

TABLES = ("time_entries", "assignments", "invoices", "invoice_line_items")


class InvoiceBackend(Protocol):
    def fetch_time_entries(self, ids: Optional[Iterable[str]] = None) -> list[dict]: ...

    def fetch_assignments(
        self, project_ids: list[str], personnel_ids: list[str], status: str = "active",
    ) -> list[dict]: ...

    def next_invoice_number(self) -> str: ...

    def insert_invoice(self, header: dict) -> dict: ...

    def insert_line_items(self, invoice_id: str, items: list[dict]) -> list[dict]: ...

    def delete_invoice(self, invoice_id: str) -> None: ...

    def delete_line_items(self, invoice_id: str) -> None: ...

    def link_time_entries(self, entry_ids: list[str], invoice_id: str, invoiced_at: datetime) -> list[str]:
        """Set invoice id/timestamp where ``invoice_id IS NULL``; return the ids updated."""
        ...

    def unlink_time_entries(self, entry_ids: list[str], invoice_id: str) -> list[str]: ...


class InMemoryBackend:
    """Dict-backed implementation of ``InvoiceBackend``."""

    def __init__(
        self,
        time_entries: Optional[list[dict]] = None,
        assignments: Optional[list[dict]] = None,
        invoices: Optional[list[dict]] = None,
        invoice_line_items: Optional[list[dict]] = None,
        next_invoice_number: int = 1,
        invoice_number_prefix: str = DEFAULT_INVOICE_NUMBER_PREFIX,
    ):
        self.time_entries = list(time_entries or [])
        self.assignments = list(assignments or [])
        self.invoices = list(invoices or [])
        self.invoice_line_items = list(invoice_line_items or [])
        self.invoice_counter = next_invoice_number
        self.invoice_number_prefix = invoice_number_prefix

    # --- Reads ---

    def fetch_time_entries(self, ids=None):
        if ids is None:
            return deepcopy(self.time_entries)
        wanted = set(ids)
        return [deepcopy(e) for e in self.time_entries if e["id"] in wanted]

    def fetch_assignments(self, project_ids, personnel_ids, status="active"):
        projects = set(project_ids)
        people = set(personnel_ids)
        return [
            deepcopy(a) for a in self.assignments
            if a.get("project_id") in projects
            and a.get("personnel_id") in people
            and a.get("status", "active") == status
        ]

    def get_invoice(self, invoice_id: str) -> Optional[dict]:
        return next((deepcopy(i) for i in self.invoices if i["id"] == invoice_id), None)

    def line_items_for(self, invoice_id: str) -> list[dict]:
        return [deepcopy(li) for li in self.invoice_line_items if li["invoice_id"] == invoice_id]

    # --- Writes ---

    def next_invoice_number(self) -> str:
        if self.invoice_counter < 1:
            raise InvoiceNumberError(f"Invalid invoice counter: {self.invoice_counter}")
        number = f"{self.invoice_number_prefix}{self.invoice_counter:04d}"
        self.invoice_counter += 1
        return number

    def insert_invoice(self, header):
        if any(i["number"] == header.get("number") for i in self.invoices):
            raise BackendError(f"Invoice number {header.get('number')} already exists")
        row = {**deepcopy(header), "id": uuid.uuid4().hex}
        row.pop("line_items", None)
        self.invoices.append(row)
        logger.debug("Inserted invoice %s (%s)", row["number"], row["id"])
        return deepcopy(row)

    def insert_line_items(self, invoice_id, items):
        if not any(i["id"] == invoice_id for i in self.invoices):
            raise BackendError(f"Invoice {invoice_id} not found")
        rows = [{**deepcopy(item), "id": uuid.uuid4().hex, "invoice_id": invoice_id} for item in items]
        self.invoice_line_items.extend(rows)
        return deepcopy(rows)

    def delete_invoice(self, invoice_id):
        self.invoices = [i for i in self.invoices if i["id"] != invoice_id]

    def delete_line_items(self, invoice_id):
        self.invoice_line_items = [li for li in self.invoice_line_items if li["invoice_id"] != invoice_id]

    def link_time_entries(self, entry_ids, invoice_id, invoiced_at):
        wanted = set(entry_ids)
        updated = []
        for entry in self.time_entries:
            if entry["id"] in wanted and not entry.get("invoice_id"):
                entry["invoice_id"] = invoice_id
                entry["invoiced_at"] = invoiced_at.isoformat()
                updated.append(entry["id"])
        return updated

    def unlink_time_entries(self, entry_ids, invoice_id):
        wanted = set(entry_ids)
        updated = []
        for entry in self.time_entries:
            if entry["id"] in wanted and entry.get("invoice_id") == invoice_id:
                entry["invoice_id"] = None
                entry["invoiced_at"] = None
                updated.append(entry["id"])
        return updated


class StoreEncoder(json.JSONEncoder):
    """Keeps money exact in the store: Decimal as string, dates as ISO text."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        return super().default(obj)


_PATH_LOCKS: dict[Path, threading.RLock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(path.resolve(), threading.RLock())


class JsonFileBackend(InMemoryBackend):
    """``InMemoryBackend`` persisted to a single JSON file.

    Every call reloads the file under a per-path lock, so sessions sharing
    a store see each other's invoices, counter and links. Writes go to a
    temp file that replaces the store atomically.

    File layout: ``{"time_entries": [...], "assignments": [...],
    "invoices": [...], "invoice_line_items": [...], "next_invoice_number": N}``.
    """

    def __init__(self, path: str | Path, invoice_number_prefix: str = DEFAULT_INVOICE_NUMBER_PREFIX):
        super().__init__(invoice_number_prefix=invoice_number_prefix)
        self.path = Path(path)
        self._lock = _lock_for(self.path)
        self._load()

    def _load(self) -> None:
        data = {}
        if self.path.exists():
            data = json.loads(self.path.read_text(encoding="utf-8"))
        for table in TABLES:
            setattr(self, table, list(data.get(table) or []))
        self.invoice_counter = int(data.get("next_invoice_number", 1))

    def _write(self) -> None:
        data = {table: getattr(self, table) for table in TABLES}
        data["next_invoice_number"] = self.invoice_counter
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, cls=StoreEncoder)
            os.replace(tmp, self.path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    @contextmanager
    def _fresh(self, write: bool = False):
        """Reload the store, run the operation, and persist it only if it succeeded."""
        with self._lock:
            self._load()
            yield
            if write:
                self._write()

    # --- Reads ---

    def fetch_time_entries(self, ids=None):
        with self._fresh():
            return super().fetch_time_entries(ids)

    def fetch_assignments(self, project_ids, personnel_ids, status="active"):
        with self._fresh():
            return super().fetch_assignments(project_ids, personnel_ids, status)

    def get_invoice(self, invoice_id):
        with self._fresh():
            return super().get_invoice(invoice_id)

    def line_items_for(self, invoice_id):
        with self._fresh():
            return super().line_items_for(invoice_id)

    # --- Writes ---

    def next_invoice_number(self):
        with self._fresh(write=True):
            return super().next_invoice_number()

    def insert_invoice(self, header):
        with self._fresh(write=True):
            return super().insert_invoice(header)

    def insert_line_items(self, invoice_id, items):
        with self._fresh(write=True):
            return super().insert_line_items(invoice_id, items)

    def delete_invoice(self, invoice_id):
        with self._fresh(write=True):
            super().delete_invoice(invoice_id)

    def delete_line_items(self, invoice_id):
        with self._fresh(write=True):
            super().delete_line_items(invoice_id)

    def link_time_entries(self, entry_ids, invoice_id, invoiced_at):
        with self._fresh(write=True):
            return super().link_time_entries(entry_ids, invoice_id, invoiced_at)

    def unlink_time_entries(self, entry_ids, invoice_id):
        with self._fresh(write=True):
            return super().unlink_time_entries(entry_ids, invoice_id)
