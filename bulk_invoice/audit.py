"""Audit engine.

Generates a traceability JSON record of a build and its emission results.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from bulk_invoice.models import CustomerGroup, ExclusionCounts, InvoiceResult


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date values."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        return super().default(obj)


def _group_dict(group: CustomerGroup) -> dict:
    return {
        "customer_id": group.customer_id,
        "customer_name": group.customer_name,
        "selected": group.selected,
        "week_label": group.week_label,
        "projects": [
            {
                "project_id": p.project_id,
                "project_name": p.project_name,
                "total_hours": float(p.total_hours),
                "entry_ids": [e.id for e in p.entries],
            }
            for p in group.projects
        ],
        "hours": {
            "total": float(group.total_hours),
            "regular": float(group.regular_hours),
            "overtime": float(group.overtime_hours),
        },
        "rate_brackets": [
            {
                "bracket_id": b.bracket.id,
                "bracket_name": b.bracket.name,
                "period": b.period_key.isoformat() if b.period_key else None,
                "bill_rate": float(b.bracket.bill_rate),
                "overtime_multiplier": float(b.bracket.overtime_multiplier),
                "regular_hours": float(b.regular_hours),
                "overtime_hours": float(b.overtime_hours),
                "personnel_ids": list(b.personnel_ids),
                "total_cost": float(b.total_cost),
            }
            for b in group.bracket_totals
        ],
        "personnel_without_brackets": [
            {"id": pid, "name": name} for pid, name in group.personnel_without_brackets
        ],
        "line_items": [
            {
                "bracket_id": li.bracket_id,
                "period": li.period_key.isoformat() if li.period_key else None,
                "type": li.type.value,
                "product_name": li.product_name,
                "description": li.description,
                "hours": float(li.hours),
                "rate": float(li.rate),
                "total": float(li.total),
                "selected": li.selected,
            }
            for li in group.line_items
        ],
        "total_billable": float(group.total_billable),
    }


def _result_dict(result: InvoiceResult) -> dict:
    return {
        "customer_id": result.customer_id,
        "customer_name": result.customer_name,
        "success": result.success,
        "invoice_id": result.invoice_id,
        "invoice_number": result.invoice_number,
        "total": float(result.total),
        "entries_linked": result.entries_linked,
        "error": result.error,
        "conflicting_entry_ids": list(result.conflicting_entry_ids),
        "compensation_errors": list(result.compensation_errors),
    }


def generate_audit_dict(
    groups: list[CustomerGroup],
    results: Optional[list[InvoiceResult]] = None,
    exclusions: Optional[ExclusionCounts] = None,
    threshold: Optional[Decimal] = None,
    policy: Optional[str] = None,
) -> dict:
    """Build audit dictionary from a build and optional emission results (no file I/O)."""
    exclusions = exclusions or ExclusionCounts()
    results = results or []
    all_dates = sorted({e.entry_date for g in groups for e in g.entries})
    return {
        "settings": {
            "weekly_overtime_threshold": float(threshold) if threshold is not None else None,
            "overtime_policy": policy,
        },
        "excluded": {
            "already_invoiced": exclusions.already_invoiced,
            "no_customer": exclusions.no_customer,
        },
        "customers": [_group_dict(g) for g in groups],
        "results": [_result_dict(r) for r in results],
        "summary": {
            "total_customers": len(groups),
            "customers_with_rate_issues": sum(1 for g in groups if g.has_rate_bracket_issues),
            "total_hours": float(sum((g.total_hours for g in groups), Decimal("0"))),
            "total_regular_hours": float(sum((g.regular_hours for g in groups), Decimal("0"))),
            "total_overtime_hours": float(sum((g.overtime_hours for g in groups), Decimal("0"))),
            "total_billable": float(sum((g.total_billable for g in groups if g.is_submittable), Decimal("0"))),
            "invoices_created": sum(1 for r in results if r.success),
            "invoices_failed": sum(1 for r in results if not r.success),
        },
        "date_range": {
            "start": all_dates[0].isoformat() if all_dates else None,
            "end": all_dates[-1].isoformat() if all_dates else None,
            "total_dates": len(all_dates),
        },
    }


def generate_audit(audit: dict, output_path: str | Path) -> Path:
    """Write an audit dictionary to a JSON file."""
    output_path = Path(output_path)
    output_path.write_text(json.dumps(audit, indent=2, cls=DecimalEncoder), encoding='utf-8')
    return output_path
