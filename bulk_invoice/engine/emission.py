"""Invoice emission.

Creates one draft invoice per selected customer and links the consumed time
entries to it. Customers are processed one at a time; a failure is recorded
on that customer's result and never stops the remaining customers.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from bulk_invoice.engine.hours_splitter import week_start
from bulk_invoice.engine.line_items import selected_customers
from bulk_invoice.engine.saga import Saga, SagaFailed
from bulk_invoice.models import (
    ConcurrencyConflictError,
    CustomerGroup,
    InvoiceNumberError,
    InvoiceResult,
    LineItem,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def entries_to_link(group: CustomerGroup) -> list[str]:
    """Ids of the customer's entries billed by one of its selected line items."""
    keys = {(li.bracket_id, li.period_key) for li in group.selected_line_items}
    ids = []
    for item in group.resolved_entries:
        if item.bracket is None or not item.entry.personnel_id:
            continue
        bracket_id = item.bracket.id
        if (bracket_id, None) in keys or (bracket_id, week_start(item.entry_date)) in keys:
            ids.append(item.id)
    return ids


def line_item_payload(item: LineItem) -> dict:
    return {
        "product_name": item.product_name,
        "description": item.description,
        "quantity": item.hours,
        "unit_price": item.rate,
        "markup": ZERO,
        "total": item.total,
    }


def build_invoice_header(
    group: CustomerGroup,
    number: str,
    due_date: date,
    notes: Optional[str] = None,
    invoice_date: Optional[date] = None,
) -> dict:
    subtotal = group.total_billable
    first_project = group.projects[0] if group.projects else None
    return {
        "number": number,
        "customer_id": group.customer_id,
        "customer_name": group.customer_name,
        "project_id": first_project.project_id if first_project else None,
        "project_name": group.project_names,
        "invoice_date": invoice_date.isoformat() if invoice_date else None,
        "due_date": due_date.isoformat(),
        "subtotal": subtotal,
        "tax_rate": ZERO,
        "tax_amount": ZERO,
        "total": subtotal,
        "status": "draft",
        "notes": notes or None,
        "line_items": [line_item_payload(li) for li in group.selected_line_items],
    }


def emit_customer_invoice(
    group: CustomerGroup,
    backend,
    due_date: date,
    notes: Optional[str] = None,
    invoice_date: Optional[date] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> InvoiceResult:
    """Create one customer's invoice as a compensating saga."""
    now = now or (lambda: datetime.now(timezone.utc))
    entry_ids = entries_to_link(group)

    def allocate_number(ctx):
        try:
            return backend.next_invoice_number()
        except InvoiceNumberError:
            raise
        except Exception as e:
            raise InvoiceNumberError(f"Failed to allocate invoice number: {e}") from e

    def insert_invoice(ctx):
        header = build_invoice_header(group, ctx["number"], due_date, notes, invoice_date)
        return backend.insert_invoice(header)

    def insert_line_items(ctx):
        payload = [line_item_payload(li) for li in group.selected_line_items]
        return backend.insert_line_items(ctx["invoice"]["id"], payload)

    def link_entries(ctx):
        return list(backend.link_time_entries(entry_ids, ctx["invoice"]["id"], now()))

    def check_conflicts(ctx):
        linked = set(ctx["link"])
        conflicts = [eid for eid in entry_ids if eid not in linked]
        if conflicts:
            raise ConcurrencyConflictError(conflicts)

    saga = Saga(f"invoice:{group.customer_name}")
    saga.add_step("number", allocate_number)
    saga.add_step("invoice", insert_invoice, lambda ctx: backend.delete_invoice(ctx["invoice"]["id"]))
    saga.add_step("line_items", insert_line_items, lambda ctx: backend.delete_line_items(ctx["invoice"]["id"]))
    if entry_ids:
        saga.add_step(
            "link",
            link_entries,
            lambda ctx: backend.unlink_time_entries(ctx["link"], ctx["invoice"]["id"]),
        )
        saga.add_step("conflicts", check_conflicts)

    context: dict = {}
    try:
        saga.run(context)
    except SagaFailed as e:
        error = e.error
        logger.error("Invoice for %s failed at '%s': %s", group.customer_name, e.step, error)
        return InvoiceResult(
            customer_id=group.customer_id,
            customer_name=group.customer_name,
            success=False,
            error=str(error) or "Failed to create invoice",
            conflicting_entry_ids=list(getattr(error, "entry_ids", [])),
            compensation_errors=list(e.compensation_errors),
        )

    invoice = context["invoice"]
    result = InvoiceResult(
        customer_id=group.customer_id,
        customer_name=group.customer_name,
        success=True,
        invoice_id=invoice.get("id"),
        invoice_number=invoice.get("number") or context["number"],
        total=group.total_billable,
        entries_linked=len(entry_ids),
    )
    logger.info(
        "Created invoice %s for %s: %s, %d entries linked",
        result.invoice_number, group.customer_name, result.total, result.entries_linked,
    )
    return result


def emit_invoices(
    groups: Iterable[CustomerGroup],
    backend,
    due_date: date,
    notes: Optional[str] = None,
    invoice_date: Optional[date] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> list[InvoiceResult]:
    """Emit invoices for every selected customer with a selected line item, sequentially."""
    results = []
    for group in selected_customers(groups):
        results.append(emit_customer_invoice(group, backend, due_date, notes, invoice_date, now))
    succeeded = sum(1 for r in results if r.success)
    logger.info("%d of %d invoices created", succeeded, len(results))
    return results
