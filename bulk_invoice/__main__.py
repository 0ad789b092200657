"""CLI entry point.

Usage:
    python -m bulk_invoice preview \
        --store "data/store.json" \
        --threshold 40 \
        --excel-out "Invoice_Review.xlsx" \
        --audit-out "Audit.json"

    python -m bulk_invoice create \
        --store "data/store.json" \
        --due-date 2026-01-16 \
        --customer cust-1 --customer cust-2
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import typer

from bulk_invoice.config import load_settings
from bulk_invoice.log import setup_logging
from bulk_invoice.models import BuilderStep, BulkInvoiceError, StrictValidationError

app = typer.Typer(help="Build draft customer invoices from unbilled time entries.")


def _open_builder(store: Optional[str], threshold: Optional[float], policy: Optional[str], strict: bool):
    from bulk_invoice.backend import JsonFileBackend
    from bulk_invoice.engine import BulkInvoiceBuilder
    from bulk_invoice.parsers import load_time_entries

    settings = load_settings()
    setup_logging(settings.log_level)
    changes = {"strict_validation": strict}
    if store:
        changes["store_path"] = Path(store)
    if threshold is not None:
        changes["weekly_overtime_threshold"] = Decimal(str(threshold))
    if policy:
        changes["overtime_policy"] = policy
    settings = replace(settings, **changes)

    backend = JsonFileBackend(settings.store_path, settings.invoice_number_prefix)
    entries = load_time_entries(backend.fetch_time_entries())
    builder = BulkInvoiceBuilder(backend, settings)
    builder.open(entries)

    typer.echo(f"Store: {settings.store_path}")
    typer.echo(f"Overtime: {settings.overtime_policy}, threshold {settings.weekly_overtime_threshold}h")
    typer.echo(f"Valid entries: {len(builder.valid_entries)}")
    if builder.exclusions.already_invoiced:
        typer.echo(f"  Skipped {builder.exclusions.already_invoiced} already invoiced entries")
    if builder.exclusions.no_customer:
        typer.echo(f"  Skipped {builder.exclusions.no_customer} entries without a customer")
    return builder


def _print_groups(builder) -> None:
    for group in builder.groups:
        marker = "x" if group.is_submittable else " "
        typer.echo(f"\n[{marker}] {group.customer_name} ({group.project_names})")
        typer.echo(f"    {group.week_label}")
        typer.echo(
            f"    Hours: {group.total_hours} total, {group.regular_hours} regular, "
            f"{group.overtime_hours} overtime"
        )
        for item in group.line_items:
            typer.echo(f"    - {item.product_name}: {item.hours:.1f}h x ${item.rate:.2f} = ${item.total}")
        if group.has_rate_bracket_issues:
            names = ", ".join(name for _, name in group.personnel_without_brackets)
            typer.echo(f"    WARNING: no rate bracket for {names}", err=True)
        typer.echo(f"    Subtotal: ${group.total_billable}")

    totals = builder.totals
    typer.echo(
        f"\n  {totals['customer_count']} invoice(s), {totals['total_hours']}h, "
        f"TOTAL: ${totals['total_billable']}"
    )


def _build(builder) -> None:
    builder.build()
    if builder.step != BuilderStep.REVIEW:
        typer.echo(f"\nFAILED to build customer groups: {builder.error}", err=True)
        raise typer.Exit(1)


@app.command()
def preview(
    store: str = typer.Option(None, "--store", help="Path to JSON store (default: BULK_INVOICE_STORE)"),
    threshold: float = typer.Option(None, "--threshold", help="Weekly overtime threshold in hours"),
    policy: str = typer.Option(None, "--policy", help="Overtime policy: whole_range or per_week"),
    excel_out: str = typer.Option(None, "--excel-out", help="Write review workbook to this path"),
    audit_out: str = typer.Option(None, "--audit-out", help="Write audit JSON to this path"),
    strict: bool = typer.Option(False, "--strict/--no-strict", help="Strict input validation"),
) -> None:
    """Show the draft invoices that would be created."""
    from bulk_invoice.audit import generate_audit, generate_audit_dict
    from bulk_invoice.excel import export_review_workbook

    try:
        builder = _open_builder(store, threshold, policy, strict)
        _build(builder)
        _print_groups(builder)

        if excel_out:
            export_review_workbook(builder.groups, excel_out)
            typer.echo(f"\nReview workbook saved to: {excel_out}")
        if audit_out:
            audit = generate_audit_dict(
                builder.groups,
                exclusions=builder.exclusions,
                threshold=builder.settings.weekly_overtime_threshold,
                policy=builder.policy.name,
            )
            generate_audit(audit, audit_out)
            typer.echo(f"Audit file saved to: {audit_out}")

    except StrictValidationError as e:
        typer.echo("\nSTRICT VALIDATION FAILED:", err=True)
        for error in e.errors:
            typer.echo(f"  ERROR: {error}", err=True)
        raise typer.Exit(1)
    except (BulkInvoiceError, ValueError, OSError) as e:
        typer.echo(f"\nFATAL ERROR: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def create(
    store: str = typer.Option(None, "--store", help="Path to JSON store (default: BULK_INVOICE_STORE)"),
    threshold: float = typer.Option(None, "--threshold", help="Weekly overtime threshold in hours"),
    policy: str = typer.Option(None, "--policy", help="Overtime policy: whole_range or per_week"),
    due_date: str = typer.Option(None, "--due-date", help="Due date YYYY-MM-DD (default: next Friday)"),
    notes: str = typer.Option("", "--notes", help="Notes added to every invoice"),
    customer: List[str] = typer.Option(None, "--customer", help="Only invoice these customer ids"),
    audit_out: str = typer.Option(None, "--audit-out", help="Write audit JSON to this path"),
    strict: bool = typer.Option(False, "--strict/--no-strict", help="Strict input validation"),
) -> None:
    """Create draft invoices and link the billed time entries."""
    from bulk_invoice.audit import generate_audit, generate_audit_dict

    try:
        builder = _open_builder(store, threshold, policy, strict)
        _build(builder)
        if customer:
            builder.select_only(customer)
        if due_date:
            builder.due_date = date.fromisoformat(due_date)
        builder.notes = notes
        _print_groups(builder)

        if not builder.selected_customers:
            typer.echo("\nNothing to invoice.", err=True)
            raise typer.Exit(1)

        typer.echo(f"\nCreating {len(builder.selected_customers)} invoice(s), due {builder.due_date}...")
        results = builder.create_invoices()
        for result in results:
            if result.success:
                typer.echo(
                    f"  OK   {result.customer_name}: {result.invoice_number} "
                    f"${result.total} ({result.entries_linked} entries linked)"
                )
            else:
                typer.echo(f"  FAIL {result.customer_name}: {result.error}", err=True)

        typer.echo(
            f"\n{builder.success_count} of {len(results)} invoices created, "
            f"${builder.total_created} total, {builder.total_entries_linked} entries linked"
        )

        if audit_out:
            audit = generate_audit_dict(
                builder.groups,
                results=results,
                exclusions=builder.exclusions,
                threshold=builder.settings.weekly_overtime_threshold,
                policy=builder.policy.name,
            )
            generate_audit(audit, audit_out)
            typer.echo(f"Audit file saved to: {audit_out}")

        succeeded = builder.success_count
        builder.close()
        if succeeded == 0:
            raise typer.Exit(1)

    except StrictValidationError as e:
        typer.echo("\nSTRICT VALIDATION FAILED:", err=True)
        for error in e.errors:
            typer.echo(f"  ERROR: {error}", err=True)
        raise typer.Exit(1)
    except (BulkInvoiceError, ValueError, OSError) as e:
        typer.echo(f"\nFATAL ERROR: {e}", err=True)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
