"""Bulk invoice pipeline: rates, grouping, allocation, line items, emission."""
from bulk_invoice.engine.builder import BulkInvoiceBuilder, build_customer_groups
from bulk_invoice.engine.calculator import allocate_hours
from bulk_invoice.engine.emission import emit_invoices
from bulk_invoice.engine.grouping import group_entries, partition_entries
from bulk_invoice.engine.hours_splitter import (
    PerWeekOvertimePolicy,
    WholeRangeOvertimePolicy,
    get_policy,
)
from bulk_invoice.engine.line_items import synthesize_line_items
from bulk_invoice.engine.rates import build_rate_lookup, fetch_rate_lookup, resolve_rates
from bulk_invoice.engine.validator import validate_entries

__all__ = [
    "BulkInvoiceBuilder",
    "PerWeekOvertimePolicy",
    "WholeRangeOvertimePolicy",
    "allocate_hours",
    "build_customer_groups",
    "build_rate_lookup",
    "emit_invoices",
    "fetch_rate_lookup",
    "get_policy",
    "group_entries",
    "partition_entries",
    "resolve_rates",
    "synthesize_line_items",
    "validate_entries",
]
