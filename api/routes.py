"""API routes for the Bulk Invoice Builder."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends

from bulk_invoice.backend import InMemoryBackend, JsonFileBackend
from bulk_invoice.config import Settings, load_settings
from bulk_invoice.engine import BulkInvoiceBuilder
from bulk_invoice.models import BuilderStep, CustomerGroup, InvoiceResult, StrictValidationError
from bulk_invoice.parsers import load_time_entries

from api.schemas import (
    CreateInvoicesRequest,
    CreateInvoicesResponse,
    CustomerGroupSummary,
    ExcludedCounts,
    InvoiceResultSummary,
    LineItemSummary,
    PersonnelSummary,
    PreviewRequest,
    PreviewResponse,
    ReviewTotals,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def get_settings() -> Settings:
    return load_settings()


def get_backend(settings: Settings = Depends(get_settings)):
    return JsonFileBackend(settings.store_path, settings.invoice_number_prefix)


def _apply_overrides(settings: Settings, threshold: float | None, policy: str | None) -> Settings:
    changes = {}
    if threshold is not None:
        changes["weekly_overtime_threshold"] = Decimal(str(threshold))
    if policy:
        changes["overtime_policy"] = policy
    return replace(settings, **changes)


def _group_summary(group: CustomerGroup) -> CustomerGroupSummary:
    return CustomerGroupSummary(
        customer_id=group.customer_id,
        customer_name=group.customer_name,
        project_names=group.project_names,
        week_label=group.week_label,
        total_hours=float(group.total_hours),
        regular_hours=float(group.regular_hours),
        overtime_hours=float(group.overtime_hours),
        total_billable=float(group.total_billable),
        selected=group.is_submittable,
        has_rate_bracket_issues=group.has_rate_bracket_issues,
        personnel_without_brackets=[
            PersonnelSummary(id=pid, name=name) for pid, name in group.personnel_without_brackets
        ],
        line_items=[
            LineItemSummary(
                bracket_id=li.bracket_id,
                period=li.period_key.isoformat() if li.period_key else None,
                type=li.type.value,
                product_name=li.product_name,
                description=li.description,
                hours=float(li.hours),
                rate=float(li.rate),
                total=float(li.total),
                selected=li.selected,
            )
            for li in group.line_items
        ],
    )


def _result_summary(result: InvoiceResult) -> InvoiceResultSummary:
    return InvoiceResultSummary(
        customer_id=result.customer_id,
        customer_name=result.customer_name,
        success=result.success,
        invoice_id=result.invoice_id,
        invoice_number=result.invoice_number,
        total=float(result.total),
        entries_linked=result.entries_linked,
        error=result.error,
        conflicting_entry_ids=list(result.conflicting_entry_ids),
    )


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.post("/preview", response_model=PreviewResponse)
def preview(request: PreviewRequest, settings: Settings = Depends(get_settings)):
    """Build customer groups from posted entries and assignment rows.

    Nothing is written; the response lists the draft invoices and line items
    that would be created, plus counts of excluded entries.
    """
    try:
        settings = _apply_overrides(settings, request.weekly_overtime_threshold, request.overtime_policy)
        entries = load_time_entries(request.time_entries)
        backend = InMemoryBackend(time_entries=request.time_entries, assignments=request.assignments)
        builder = BulkInvoiceBuilder(backend, settings).open(entries)
        builder.build()
    except StrictValidationError as e:
        return PreviewResponse(success=False, error_type="validation_error", errors=e.errors)
    except ValueError as e:
        return PreviewResponse(success=False, error_type="config_error", errors=[str(e)])

    if builder.step != BuilderStep.REVIEW:
        return PreviewResponse(success=False, error_type="build_error", errors=[builder.error or "Build failed"])

    totals = builder.totals
    return PreviewResponse(
        success=True,
        customers=[_group_summary(g) for g in builder.groups],
        excluded=ExcludedCounts(
            already_invoiced=builder.exclusions.already_invoiced,
            no_customer=builder.exclusions.no_customer,
        ),
        totals=ReviewTotals(
            total_hours=float(totals["total_hours"]),
            total_billable=float(totals["total_billable"]),
            customer_count=totals["customer_count"],
        ),
    )


@router.post("/invoices", response_model=CreateInvoicesResponse)
def create_invoices(
    request: CreateInvoicesRequest,
    settings: Settings = Depends(get_settings),
    backend=Depends(get_backend),
):
    """Create draft invoices for every unbilled entry in the store.

    Customers are processed sequentially; per-customer failures are reported
    in ``results`` without stopping the others.
    """
    try:
        settings = _apply_overrides(settings, request.weekly_overtime_threshold, request.overtime_policy)
        entries = load_time_entries(backend.fetch_time_entries())
        builder = BulkInvoiceBuilder(backend, settings).open(entries)
        if request.due_date:
            builder.due_date = date.fromisoformat(request.due_date)
        builder.notes = request.notes or ""
        builder.build()
    except StrictValidationError as e:
        return CreateInvoicesResponse(success=False, error_type="validation_error", errors=e.errors)
    except ValueError as e:
        return CreateInvoicesResponse(success=False, error_type="config_error", errors=[str(e)])

    if builder.step != BuilderStep.REVIEW:
        return CreateInvoicesResponse(
            success=False, error_type="build_error", errors=[builder.error or "Build failed"],
        )

    if request.customer_ids is not None:
        builder.select_only(request.customer_ids)

    results = builder.create_invoices()
    logger.info("API created %d of %d invoices", builder.success_count, len(results))
    return CreateInvoicesResponse(
        success=all(r.success for r in results),
        results=[_result_summary(r) for r in results],
        invoices_created=builder.success_count,
        total_created=float(builder.total_created),
        entries_linked=builder.total_entries_linked,
    )
