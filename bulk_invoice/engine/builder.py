"""Bulk invoice builder.

Composes the pipeline (group -> resolve rates -> allocate hours -> line
items) and drives the ``configure -> review -> results`` flow an operator
walks through.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from bulk_invoice.config import Settings, load_settings
from bulk_invoice.engine import grouping, line_items
from bulk_invoice.engine.calculator import allocate_hours
from bulk_invoice.engine.emission import emit_invoices
from bulk_invoice.engine.hours_splitter import OvertimePolicy, get_policy
from bulk_invoice.engine.rates import RateLookup, fetch_rate_lookup, resolve_rates
from bulk_invoice.engine.validator import validate_entries
from bulk_invoice.models import (
    BuilderStep,
    BulkInvoiceError,
    CustomerGroup,
    ExclusionCounts,
    InvalidTransitionError,
    InvoiceResult,
    ProjectWeeks,
    TimeEntry,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def next_friday(day: date) -> date:
    """The first Friday strictly after ``day``."""
    return day + timedelta(days=(4 - day.weekday()) % 7 or 7)


def build_customer_groups(
    entries: Iterable[TimeEntry],
    lookup: RateLookup,
    threshold: Decimal,
    policy: Optional[OvertimePolicy] = None,
) -> list[CustomerGroup]:
    """Run the pure pipeline over already-fetched data."""
    groups = grouping.group_entries(entries)
    groups = resolve_rates(groups, lookup)
    groups = allocate_hours(groups, threshold, policy)
    return line_items.synthesize_line_items(groups)


class BulkInvoiceBuilder:
    """Stateful wrapper around the pipeline for one bulk invoicing session."""

    def __init__(
        self,
        backend,
        settings: Optional[Settings] = None,
        today: Optional[date] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.backend = backend
        self.settings = settings or load_settings()
        self.policy = get_policy(self.settings.overtime_policy)
        self.today = today or date.today()
        self.now = now
        self._reset()

    def _reset(self) -> None:
        self.step = BuilderStep.CLOSED
        self.valid_entries: list[TimeEntry] = []
        self.exclusions = ExclusionCounts()
        self.week_groups: list[ProjectWeeks] = []
        self.groups: list[CustomerGroup] = []
        self.results: list[InvoiceResult] = []
        self.error: Optional[str] = None
        self.invoice_date = self.today
        self.due_date = next_friday(self.today)
        self.notes = ""

    def _require(self, *steps: BuilderStep) -> None:
        if self.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise InvalidTransitionError(f"Action requires step {allowed}, builder is in {self.step.value}")

    # --- configure ---

    def open(self, entries: Iterable[TimeEntry]) -> "BulkInvoiceBuilder":
        self._reset()
        self.valid_entries, self.exclusions = grouping.partition_entries(entries)
        self.week_groups = grouping.build_week_groups(self.valid_entries)
        self.step = BuilderStep.CONFIGURE
        logger.info(
            "Opened bulk invoice session: %d valid entries across %d project(s)",
            len(self.valid_entries), len(self.week_groups),
        )
        return self

    def toggle_week(self, project_id: str, week_key: str) -> None:
        self._require(BuilderStep.CONFIGURE)
        grouping.toggle_week(self.week_groups, project_id, week_key)

    def toggle_personnel(self, project_id: str, week_key: str, personnel_id: str) -> None:
        self._require(BuilderStep.CONFIGURE)
        grouping.toggle_personnel(self.week_groups, project_id, week_key, personnel_id)

    @property
    def selected_entries(self) -> list[TimeEntry]:
        return grouping.selected_entries(self.week_groups, self.valid_entries)

    def build(self) -> list[CustomerGroup]:
        """configure -> review. On failure the groups are emptied and the step is unchanged."""
        self._require(BuilderStep.CONFIGURE)
        entries = self.selected_entries
        self.error = None
        try:
            if self.settings.strict_validation:
                validate_entries(entries)
            lookup = fetch_rate_lookup(self.backend, entries, self.settings.default_overtime_multiplier)
            self.groups = build_customer_groups(
                entries, lookup, self.settings.weekly_overtime_threshold, self.policy,
            )
        except BulkInvoiceError as e:
            logger.error("Failed to build customer groups: %s", e)
            self.error = str(e)
            self.groups = []
            return self.groups

        self.step = BuilderStep.REVIEW
        logger.info("Built %d customer group(s)", len(self.groups))
        return self.groups

    # --- review ---

    def _update_group(self, customer_id: str, change: Callable[[CustomerGroup], CustomerGroup]) -> None:
        self._require(BuilderStep.REVIEW)
        if not any(g.customer_id == customer_id for g in self.groups):
            raise KeyError(f"Unknown customer {customer_id}")
        self.groups = [change(g) if g.customer_id == customer_id else g for g in self.groups]

    def toggle_customer(self, customer_id: str) -> None:
        self._update_group(customer_id, line_items.toggle_customer)

    def toggle_line_item(self, customer_id: str, key: line_items.LineItemKey) -> None:
        self._update_group(customer_id, lambda g: line_items.toggle_line_item(g, key))

    def update_line_item_description(self, customer_id: str, key: line_items.LineItemKey, text: str) -> None:
        self._update_group(customer_id, lambda g: line_items.update_line_item_description(g, key, text))

    def select_only(self, customer_ids: Iterable[str]) -> None:
        """Keep only the given customers selected (those with line items)."""
        self._require(BuilderStep.REVIEW)
        wanted = set(customer_ids)
        self.groups = [
            replace(g, selected=g.customer_id in wanted and bool(g.line_items))
            for g in self.groups
        ]

    @property
    def selected_customers(self) -> list[CustomerGroup]:
        return line_items.selected_customers(self.groups)

    @property
    def totals(self) -> dict:
        return line_items.review_totals(self.groups)

    def back(self) -> None:
        """review -> configure."""
        self._require(BuilderStep.REVIEW)
        self.step = BuilderStep.CONFIGURE

    def create_invoices(self) -> list[InvoiceResult]:
        """review -> results. Customers are processed one after another."""
        self._require(BuilderStep.REVIEW)
        self.results = emit_invoices(
            self.groups,
            self.backend,
            due_date=self.due_date,
            notes=self.notes,
            invoice_date=self.invoice_date,
            now=self.now,
        )
        self.step = BuilderStep.RESULTS
        return self.results

    # --- results ---

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total_created(self) -> Decimal:
        return sum((r.total for r in self.results if r.success), ZERO)

    @property
    def total_entries_linked(self) -> int:
        return sum(r.entries_linked for r in self.results)

    def close(self) -> None:
        self._reset()
