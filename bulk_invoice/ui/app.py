"""Streamlit review UI.

Walks the same builder as the CLI through configure -> review -> results.
No business logic here.

    streamlit run bulk_invoice/ui/app.py
"""

from __future__ import annotations

import json
from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import streamlit as st

from bulk_invoice.audit import DecimalEncoder, generate_audit_dict
from bulk_invoice.backend import JsonFileBackend
from bulk_invoice.config import load_settings
from bulk_invoice.engine import BulkInvoiceBuilder
from bulk_invoice.log import setup_logging
from bulk_invoice.models import BuilderStep, StrictValidationError
from bulk_invoice.parsers import load_time_entries


def _builder() -> BulkInvoiceBuilder | None:
    return st.session_state.get("builder")


def _start_session(store_path: str, threshold: float, policy: str) -> None:
    settings = load_settings()
    setup_logging(settings.log_level)
    settings = replace(
        settings,
        store_path=Path(store_path),
        weekly_overtime_threshold=Decimal(str(threshold)),
        overtime_policy=policy,
    )
    backend = JsonFileBackend(settings.store_path, settings.invoice_number_prefix)
    entries = load_time_entries(backend.fetch_time_entries())
    st.session_state["builder"] = BulkInvoiceBuilder(backend, settings).open(entries)


def _render_configure(builder: BulkInvoiceBuilder) -> None:
    st.subheader("Select Weeks to Invoice")
    st.caption(f"{len(builder.valid_entries)} entries across {len(builder.week_groups)} projects")
    if builder.exclusions.already_invoiced:
        st.info(f"{builder.exclusions.already_invoiced} entries are already invoiced and were skipped.")
    if builder.exclusions.no_customer:
        st.warning(f"{builder.exclusions.no_customer} entries have no customer and were skipped.")

    for project in builder.week_groups:
        with st.expander(f"{project.project_name} ({project.customer_name}) - {project.total_hours}h", expanded=True):
            for week in project.weeks:
                label = f"Week of {week.week_start:%b} {week.week_start.day} - {week.total_hours}h"
                checked = st.checkbox(label, value=week.selected, key=f"w-{project.project_id}-{week.week_key}")
                if checked != week.selected:
                    builder.toggle_week(project.project_id, week.week_key)
                    st.rerun()
                for person in week.personnel:
                    picked = st.checkbox(
                        f"    {person.personnel_name}: {person.hours}h",
                        value=person.selected,
                        key=f"p-{project.project_id}-{week.week_key}-{person.personnel_id}",
                    )
                    if picked != person.selected:
                        builder.toggle_personnel(project.project_id, week.week_key, person.personnel_id)
                        st.rerun()

    col1, col2 = st.columns(2)
    with col1:
        builder.invoice_date = st.date_input("Invoice date", value=builder.invoice_date)
    with col2:
        builder.due_date = st.date_input("Due date", value=builder.due_date)
    builder.notes = st.text_area("Invoice notes", value=builder.notes)

    if st.button("Review Invoices", type="primary", disabled=not builder.selected_entries):
        builder.build()
        if builder.error:
            st.error(f"Failed to build customer groups: {builder.error}")
        else:
            st.rerun()


def _render_review(builder: BulkInvoiceBuilder) -> None:
    st.subheader("Review Invoices")
    for group in builder.groups:
        title = f"{group.customer_name} - ${group.total_billable:,.2f}"
        with st.expander(title, expanded=group.has_rate_bracket_issues):
            chosen = st.checkbox(
                "Create invoice", value=group.selected,
                disabled=not group.line_items, key=f"c-{group.customer_id}",
            )
            if chosen != group.selected and group.line_items:
                builder.toggle_customer(group.customer_id)
                st.rerun()
            st.caption(f"{group.project_names} | {group.week_label}")
            if group.has_rate_bracket_issues:
                names = ", ".join(name for _, name in group.personnel_without_brackets)
                st.warning(f"No rate bracket assigned for: {names}")

            for item in group.line_items:
                key = "-".join([group.customer_id, item.bracket_id, str(item.period_key), item.type.value])
                picked = st.checkbox(
                    f"{item.product_name}: {item.hours:.1f}h x ${item.rate:.2f} = ${item.total:,.2f}",
                    value=item.selected, key=f"li-{key}",
                )
                if picked != item.selected:
                    builder.toggle_line_item(group.customer_id, item.key)
                    st.rerun()
                text = st.text_area("Description", value=item.description, key=f"d-{key}")
                if text != item.description:
                    builder.update_line_item_description(group.customer_id, item.key, text)

    totals = builder.totals
    st.metric("Total", f"${totals['total_billable']:,.2f}",
              f"{totals['customer_count']} invoices, {totals['total_hours']}h")

    col_a, col_b = st.columns(2)
    with col_a:
        if st.button("Back"):
            builder.back()
            st.rerun()
    with col_b:
        if st.button("Create Invoices", type="primary", disabled=not builder.selected_customers):
            with st.spinner("Creating invoices..."):
                builder.create_invoices()
            st.rerun()


def _render_results(builder: BulkInvoiceBuilder) -> None:
    st.subheader("Invoices Created")
    st.caption(f"{builder.success_count} of {len(builder.results)} invoices created successfully")
    for result in builder.results:
        if result.success:
            st.success(
                f"{result.customer_name}: {result.invoice_number} - ${result.total:,.2f} "
                f"({result.entries_linked} entries linked)"
            )
        else:
            st.error(f"{result.customer_name}: {result.error}")

    audit = generate_audit_dict(
        builder.groups,
        results=builder.results,
        exclusions=builder.exclusions,
        threshold=builder.settings.weekly_overtime_threshold,
        policy=builder.policy.name,
    )
    st.download_button(
        "Download Audit JSON",
        data=json.dumps(audit, indent=2, cls=DecimalEncoder),
        file_name="Audit.json",
        mime="application/json",
    )
    if st.button("Done", type="primary"):
        builder.close()
        st.session_state.pop("builder", None)
        st.rerun()


def main() -> None:
    st.set_page_config(page_title="Bulk Customer Invoices", layout="wide")
    st.title("Bulk Customer Invoices")

    settings = load_settings()
    with st.sidebar:
        store_path = st.text_input("Store file", value=str(settings.store_path))
        threshold = st.number_input(
            "Weekly overtime threshold (hours)",
            min_value=0.0, value=float(settings.weekly_overtime_threshold), step=1.0,
        )
        policy = st.selectbox(
            "Overtime policy", ["whole_range", "per_week"],
            index=0 if settings.overtime_policy == "whole_range" else 1,
        )
        if st.button("Load entries"):
            try:
                _start_session(store_path, threshold, policy)
            except StrictValidationError as e:
                for err in e.errors:
                    st.error(err)
            except (OSError, ValueError) as e:
                st.error(f"Error: {e}")

    builder = _builder()
    if builder is None or builder.step == BuilderStep.CLOSED:
        st.info("Load a store file to start.")
    elif builder.step == BuilderStep.CONFIGURE:
        _render_configure(builder)
    elif builder.step == BuilderStep.REVIEW:
        _render_review(builder)
    else:
        _render_results(builder)


if __name__ == "__main__":
    main()
