"""Canonical data model for the bulk customer invoice builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, ROUND_HALF_UP)


class LineItemType(Enum):
    REGULAR = "regular"
    OVERTIME = "overtime"


class BuilderStep(Enum):
    CONFIGURE = "configure"
    REVIEW = "review"
    RESULTS = "results"
    CLOSED = "closed"


@dataclass(frozen=True)
class TimeEntry:
    """One unit of recorded labor (canonical form)."""
    id: str
    project_id: str
    hours: Decimal
    entry_date: date
    project_name: str = "Unknown Project"
    customer_id: Optional[str] = None
    customer_name: str = "Unknown Customer"
    personnel_id: Optional[str] = None
    personnel_name: str = "Unknown"
    invoice_id: Optional[str] = None
    invoiced_at: Optional[datetime] = None

    @property
    def is_invoiced(self) -> bool:
        return bool(self.invoice_id)


@dataclass(frozen=True)
class RateBracket:
    """Bill rate and overtime multiplier for a worker on a project."""
    id: str
    name: str
    bill_rate: Decimal
    overtime_multiplier: Decimal = Decimal("1.5")

    def __post_init__(self) -> None:
        if self.bill_rate < 0:
            raise ValueError(f"Bill rate for bracket '{self.name}' must not be negative, got {self.bill_rate}")
        if self.overtime_multiplier < 1:
            raise ValueError(
                f"Overtime multiplier for bracket '{self.name}' must be >= 1.0, got {self.overtime_multiplier}"
            )

    @property
    def overtime_rate(self) -> Decimal:
        return self.bill_rate * self.overtime_multiplier


@dataclass(frozen=True)
class ResolvedEntry:
    """A time entry paired with the bracket its (project, worker) pair resolved to."""
    entry: TimeEntry
    bracket: Optional[RateBracket] = None

    @property
    def id(self) -> str:
        return self.entry.id

    @property
    def entry_date(self) -> date:
        return self.entry.entry_date

    @property
    def hours(self) -> Decimal:
        return self.entry.hours


@dataclass(frozen=True)
class ProjectGroup:
    project_id: str
    project_name: str
    entries: tuple[TimeEntry, ...] = ()

    @property
    def total_hours(self) -> Decimal:
        return sum((e.hours for e in self.entries), ZERO)


@dataclass(frozen=True)
class BracketTotal:
    """Regular/overtime hours accumulated for one bracket of one customer.

    ``period_key`` is the Monday of the billed week under the per-week
    overtime policy and ``None`` when the whole entry range is billed at once.
    """
    bracket: RateBracket
    period_key: Optional[date] = None
    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    personnel_ids: tuple[str, ...] = ()

    @property
    def total_hours(self) -> Decimal:
        return self.regular_hours + self.overtime_hours

    @property
    def regular_cost(self) -> Decimal:
        return to_cents(self.regular_hours * self.bracket.bill_rate)

    @property
    def overtime_cost(self) -> Decimal:
        return to_cents(self.overtime_hours * self.bracket.overtime_rate)

    @property
    def total_cost(self) -> Decimal:
        return self.regular_cost + self.overtime_cost


@dataclass(frozen=True)
class LineItem:
    """One billable invoice row, regular or overtime, tied to one bracket."""
    bracket_id: str
    type: LineItemType
    product_name: str
    description: str
    hours: Decimal
    rate: Decimal
    total: Decimal
    period_key: Optional[date] = None
    selected: bool = True

    @property
    def key(self) -> tuple[str, Optional[date], LineItemType]:
        return (self.bracket_id, self.period_key, self.type)


@dataclass(frozen=True)
class CustomerGroup:
    """Everything billable for one customer during a single build."""
    customer_id: str
    customer_name: str
    projects: tuple[ProjectGroup, ...] = ()
    entries: tuple[TimeEntry, ...] = ()
    resolved_entries: tuple[ResolvedEntry, ...] = ()
    bracket_totals: tuple[BracketTotal, ...] = ()
    personnel_without_brackets: tuple[tuple[str, str], ...] = ()
    line_items: tuple[LineItem, ...] = ()
    week_label: str = ""
    selected: bool = True

    @property
    def total_hours(self) -> Decimal:
        return sum((e.hours for e in self.entries), ZERO)

    @property
    def regular_hours(self) -> Decimal:
        return sum((b.regular_hours for b in self.bracket_totals), ZERO)

    @property
    def overtime_hours(self) -> Decimal:
        return sum((b.overtime_hours for b in self.bracket_totals), ZERO)

    @property
    def has_rate_bracket_issues(self) -> bool:
        return len(self.personnel_without_brackets) > 0

    @property
    def selected_line_items(self) -> list[LineItem]:
        return [li for li in self.line_items if li.selected]

    @property
    def total_billable(self) -> Decimal:
        return sum((li.total for li in self.selected_line_items), ZERO)

    @property
    def is_submittable(self) -> bool:
        return self.selected and len(self.selected_line_items) > 0

    @property
    def project_names(self) -> str:
        return ", ".join(p.project_name for p in self.projects)


@dataclass
class PersonnelWeek:
    personnel_id: str
    personnel_name: str
    hours: Decimal = ZERO
    selected: bool = True


@dataclass
class WeekGroup:
    """Entries of one project falling in one Monday-start week."""
    week_start: date
    entries: list[TimeEntry] = field(default_factory=list)
    personnel: list[PersonnelWeek] = field(default_factory=list)
    selected: bool = True

    @property
    def week_key(self) -> str:
        return self.week_start.isoformat()

    @property
    def total_hours(self) -> Decimal:
        return sum((e.hours for e in self.entries), ZERO)

    @property
    def is_partial(self) -> bool:
        chosen = sum(1 for p in self.personnel if p.selected)
        return 0 < chosen < len(self.personnel)


@dataclass
class ProjectWeeks:
    project_id: str
    project_name: str
    customer_id: str
    customer_name: str
    weeks: list[WeekGroup] = field(default_factory=list)

    @property
    def total_hours(self) -> Decimal:
        return sum((w.total_hours for w in self.weeks), ZERO)


@dataclass
class InvoiceResult:
    """Outcome of one customer's invoice emission attempt."""
    customer_id: str
    customer_name: str
    success: bool
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    total: Decimal = ZERO
    entries_linked: int = 0
    error: Optional[str] = None
    conflicting_entry_ids: list[str] = field(default_factory=list)
    compensation_errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExclusionCounts:
    already_invoiced: int = 0
    no_customer: int = 0


class BulkInvoiceError(Exception):
    """Base class for bulk invoice errors."""


class StrictValidationError(BulkInvoiceError):
    """Raised when strict validation fails."""
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Strict validation failed with {len(errors)} error(s):\n" +
                         "\n".join(f"  - {e}" for e in errors))


class RateLookupError(BulkInvoiceError):
    """Assignment/rate bracket lookup failed; aborts the build."""


class BackendError(BulkInvoiceError):
    """A backend call was rejected."""


class InvoiceNumberError(BackendError):
    """The numbering service could not allocate a number."""


class ConcurrencyConflictError(BulkInvoiceError):
    """Time entries were already linked to another invoice at write time."""
    def __init__(self, entry_ids: list[str]):
        self.entry_ids = list(entry_ids)
        super().__init__(
            f"{len(self.entry_ids)} time entr{'y was' if len(self.entry_ids) == 1 else 'ies were'} "
            f"already invoiced: {', '.join(self.entry_ids)}"
        )


class InvalidTransitionError(BulkInvoiceError):
    """Builder action not allowed in the current step."""
