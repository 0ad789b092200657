"""Pydantic request/response models for the Bulk Invoice API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PreviewRequest(BaseModel):
    time_entries: list[dict]
    assignments: list[dict] = Field(default_factory=list)
    weekly_overtime_threshold: float | None = None
    overtime_policy: str | None = None


class CreateInvoicesRequest(BaseModel):
    customer_ids: list[str] | None = None
    due_date: str | None = None
    notes: str | None = None
    weekly_overtime_threshold: float | None = None
    overtime_policy: str | None = None


class LineItemSummary(BaseModel):
    bracket_id: str
    period: str | None = None
    type: str
    product_name: str
    description: str
    hours: float
    rate: float
    total: float
    selected: bool


class PersonnelSummary(BaseModel):
    id: str
    name: str


class CustomerGroupSummary(BaseModel):
    customer_id: str
    customer_name: str
    project_names: str
    week_label: str
    total_hours: float
    regular_hours: float
    overtime_hours: float
    total_billable: float
    selected: bool
    has_rate_bracket_issues: bool
    personnel_without_brackets: list[PersonnelSummary]
    line_items: list[LineItemSummary]


class ExcludedCounts(BaseModel):
    already_invoiced: int
    no_customer: int


class ReviewTotals(BaseModel):
    total_hours: float
    total_billable: float
    customer_count: int


class PreviewResponse(BaseModel):
    success: bool
    customers: list[CustomerGroupSummary] | None = None
    excluded: ExcludedCounts | None = None
    totals: ReviewTotals | None = None
    error_type: str | None = None
    errors: list[str] | None = None


class InvoiceResultSummary(BaseModel):
    customer_id: str
    customer_name: str
    success: bool
    invoice_id: str | None = None
    invoice_number: str | None = None
    total: float
    entries_linked: int
    error: str | None = None
    conflicting_entry_ids: list[str] = Field(default_factory=list)


class CreateInvoicesResponse(BaseModel):
    success: bool
    results: list[InvoiceResultSummary] | None = None
    invoices_created: int = 0
    total_created: float = 0.0
    entries_linked: int = 0
    error_type: str | None = None
    errors: list[str] | None = None
