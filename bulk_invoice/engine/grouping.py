"""Entry grouping.

Filters the candidate entries down to billable ones and partitions them into
customer -> project groups. Also builds the per-project week buckets used to
narrow the selection (by week and by worker) before customer groups are built.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable

from bulk_invoice.engine.hours_splitter import week_start
from bulk_invoice.models import (
    CustomerGroup,
    ExclusionCounts,
    PersonnelWeek,
    ProjectGroup,
    ProjectWeeks,
    TimeEntry,
    WeekGroup,
)

logger = logging.getLogger(__name__)

UNKNOWN_PERSONNEL = "unknown"


def is_billable_candidate(entry: TimeEntry) -> bool:
    return not entry.is_invoiced and bool(entry.customer_id)


def partition_entries(entries: Iterable[TimeEntry]) -> tuple[list[TimeEntry], ExclusionCounts]:
    """Split entries into valid ones and counts of the excluded ones."""
    valid: list[TimeEntry] = []
    already_invoiced = 0
    no_customer = 0
    for entry in entries:
        if entry.is_invoiced:
            already_invoiced += 1
        elif not entry.customer_id:
            no_customer += 1
        else:
            valid.append(entry)

    if already_invoiced or no_customer:
        logger.info(
            "Excluded %d already invoiced and %d customer-less entries",
            already_invoiced, no_customer,
        )
    return valid, ExclusionCounts(already_invoiced=already_invoiced, no_customer=no_customer)


def group_entries(entries: Iterable[TimeEntry]) -> list[CustomerGroup]:
    """Group valid entries by customer, then by project within each customer.

    Projects keep first-seen order; customers are sorted by name.
    """
    customers: dict[str, dict] = {}
    for entry in entries:
        if not is_billable_candidate(entry):
            continue
        customer = customers.setdefault(entry.customer_id, {
            "name": entry.customer_name,
            "entries": [],
            "projects": {},
        })
        customer["entries"].append(entry)
        project = customer["projects"].setdefault(entry.project_id, {
            "name": entry.project_name,
            "entries": [],
        })
        project["entries"].append(entry)

    groups = [
        CustomerGroup(
            customer_id=customer_id,
            customer_name=data["name"],
            projects=tuple(
                ProjectGroup(project_id=pid, project_name=p["name"], entries=tuple(p["entries"]))
                for pid, p in data["projects"].items()
            ),
            entries=tuple(data["entries"]),
        )
        for customer_id, data in customers.items()
    ]
    return sorted(groups, key=lambda g: g.customer_name.lower())


# --- Week / personnel selection ---

def _personnel_id(entry: TimeEntry) -> str:
    return entry.personnel_id or UNKNOWN_PERSONNEL


def build_week_groups(entries: Iterable[TimeEntry]) -> list[ProjectWeeks]:
    """Bucket valid entries per project into Monday-start weeks.

    Every week and every worker within it starts out selected.
    """
    projects: dict[str, ProjectWeeks] = {}
    for entry in entries:
        if not is_billable_candidate(entry):
            continue
        project = projects.get(entry.project_id)
        if project is None:
            project = ProjectWeeks(
                project_id=entry.project_id,
                project_name=entry.project_name,
                customer_id=entry.customer_id,
                customer_name=entry.customer_name,
            )
            projects[entry.project_id] = project

        start = week_start(entry.entry_date)
        week = next((w for w in project.weeks if w.week_start == start), None)
        if week is None:
            week = WeekGroup(week_start=start)
            project.weeks.append(week)
        week.entries.append(entry)

        pid = _personnel_id(entry)
        person = next((p for p in week.personnel if p.personnel_id == pid), None)
        if person is None:
            person = PersonnelWeek(personnel_id=pid, personnel_name=entry.personnel_name)
            week.personnel.append(person)
        person.hours += entry.hours

    for project in projects.values():
        project.weeks.sort(key=lambda w: w.week_start)
    return sorted(projects.values(), key=lambda p: p.project_name.lower())


def _find_week(week_groups: list[ProjectWeeks], project_id: str, week_key: str) -> WeekGroup:
    for project in week_groups:
        if project.project_id != project_id:
            continue
        for week in project.weeks:
            if week.week_key == week_key:
                return week
    raise KeyError(f"No week {week_key} for project {project_id}")


def toggle_week(week_groups: list[ProjectWeeks], project_id: str, week_key: str) -> None:
    """Flip a week's selection, carrying every worker in it along."""
    week = _find_week(week_groups, project_id, week_key)
    week.selected = not week.selected
    week.personnel = [replace(p, selected=week.selected) for p in week.personnel]


def toggle_personnel(
    week_groups: list[ProjectWeeks],
    project_id: str,
    week_key: str,
    personnel_id: str,
) -> None:
    """Flip one worker in a week; the week stays selected while any worker is."""
    week = _find_week(week_groups, project_id, week_key)
    week.personnel = [
        replace(p, selected=not p.selected) if p.personnel_id == personnel_id else p
        for p in week.personnel
    ]
    week.selected = any(p.selected for p in week.personnel)


def selected_entries(
    week_groups: list[ProjectWeeks],
    entries: Iterable[TimeEntry],
) -> list[TimeEntry]:
    """Entries whose week and worker are both selected, in original order."""
    chosen: set[str] = set()
    for project in week_groups:
        for week in project.weeks:
            if not week.selected:
                continue
            people = {p.personnel_id for p in week.personnel if p.selected}
            chosen.update(e.id for e in week.entries if _personnel_id(e) in people)
    return [e for e in entries if e.id in chosen]


def selected_week_count(week_groups: list[ProjectWeeks]) -> int:
    return sum(1 for p in week_groups for w in p.weeks if w.selected)
