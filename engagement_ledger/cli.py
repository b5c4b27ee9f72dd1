#!/usr/bin/env python3
"""
Command-line interface for the engagement ledger.

Provides admin and expert views over the JSON store:
- List, add and assign clients
- Browse experts and their earnings
- Record payments
- Inspect the pipeline funnel and platform overview
- Check stored data for inconsistencies
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import jsonschema
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import configure_logging, load_config
from .errors import EngagementError
from .store import EntityStore
from .workflows.integrity import find_invariant_violations
from .workflows.intake import EngagementService
from .workflows.pipeline import bucket_by_stage, stage_dropoff, unstaged_count
from .workflows.views import (
    ClientFilters,
    SortDirection,
    SortField,
    SortSpec,
    ViewAssembler,
)

console = Console()


def get_services(args) -> tuple[EntityStore, ViewAssembler]:
    """Build the store and view assembler from the loaded config."""
    config = args.config
    store = EntityStore(config.data_dir)
    return store, ViewAssembler(store, config)


def _money(amount: float, currency: Optional[str] = None) -> str:
    return f"{amount:,.2f}" + (f" {currency}" if currency else "")


def _total(total) -> str:
    if total.mixed_currency:
        return ", ".join(_money(a, c) for c, a in sorted(total.by_currency.items()))
    return _money(total.amount, total.currency)


def _print_json(data) -> None:
    console.print_json(json.dumps(data, default=str))


def _report_failures(result) -> None:
    for failure in getattr(result, "failures", []):
        console.print(f"[yellow]Warning:[/yellow] {failure.aggregate} unavailable ({escape(str(failure.error))})")
    for violation in getattr(result, "violations", []):
        console.print(f"[yellow]Inconsistency:[/yellow] {escape(violation.message)}")


def _split(value: str) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


# === Client Commands ===

def cmd_clients_list(args):
    """Show the admin client table."""
    _, views = get_services(args)
    filters = ClientFilters(
        search=args.search or "",
        status=args.status,
        country=args.country,
        complexity=args.complexity,
        expert=args.expert,
    )
    sort = SortSpec(SortField(args.sort), SortDirection.ASC if args.asc else SortDirection.DESC)
    result = views.admin_client_list(filters, sort, page=args.page)

    if args.json:
        _print_json(result.to_dict())
        return

    page = result.page
    if page.total_items == 0:
        console.print("No clients found.")
        return

    table = Table(title=f"Clients {page.first_index}-{page.last_index} of {page.total_items}")
    for column in ("Name", "Email", "Countries", "Stage", "Status", "Experts", "Revenue"):
        table.add_column(column)
    for row in page.items:
        c = row.client
        table.add_row(
            escape(c.full_name),
            escape(c.email),
            escape(", ".join(c.countries)),
            c.pipeline_stage.value if c.pipeline_stage else "Not Set",
            c.overall_status,
            escape(", ".join(row.expert_names)) or "-",
            _money(row.revenue) if row.revenue > 0 else "--",
        )
    console.print(table)
    console.print(f"Page {page.page} of {page.total_pages}")
    _report_failures(result)


def cmd_clients_mine(args):
    """Show an expert's own client list."""
    _, views = get_services(args)
    result = views.expert_client_list(args.expert, include_inactive=args.all)

    if args.json:
        _print_json(result.to_dict())
        return

    if not result.rows:
        console.print("No clients assigned.")
        return

    table = Table(title="My clients")
    for column in ("Name", "Jurisdictions", "Experts", "Progress", "Earnings", "Category"):
        table.add_column(column)
    for row in result.rows:
        table.add_row(
            escape(row.client.full_name),
            escape(", ".join(row.jurisdictions)),
            escape(", ".join(f"{e.display_name} ({e.jurisdiction})" for e in row.experts)),
            f"{row.progress}%",
            _money(row.earnings),
            row.category.value,
        )
    console.print(table)
    _report_failures(result)


def cmd_clients_add(args):
    """Add a client on behalf of an expert."""
    store, _ = get_services(args)
    service = EngagementService(store)
    client, assignment = service.add_client(args.expert, {
        "full_name": args.name,
        "email": args.email,
        "phone": args.phone,
        "countries": _split(args.countries),
        "asset_types": _split(args.assets),
        "tax_years": _split(args.tax_years),
        "complexity": args.complexity,
    })

    console.print("Client created!")
    console.print(f"Client ID: {client.id}")
    console.print(f"Assignment: {assignment.id} ({assignment.jurisdiction})")


def cmd_assign(args):
    """Assign an expert to a client for a jurisdiction."""
    store, _ = get_services(args)
    assignment = EngagementService(store).assign_expert(args.client, args.expert, args.jurisdiction)
    console.print(f"Assignment {assignment.id} is {assignment.status.value}")


def cmd_stage(args):
    """Move a client to a pipeline stage."""
    store, _ = get_services(args)
    client = EngagementService(store).set_pipeline_stage(args.client, args.stage or None)
    stage = client.pipeline_stage.value if client.pipeline_stage else "Not Set"
    console.print(f"{escape(client.full_name)} is now at {stage}")


# === Expert Commands ===

def cmd_experts_list(args):
    """List experts with client counts and earnings."""
    _, views = get_services(args)
    result = views.admin_expert_list(args.search or "")

    if args.json:
        _print_json(result.to_dict())
        return

    if not result.rows:
        console.print("No experts found.")
        return

    table = Table(title="Experts")
    for column in ("ID", "Name", "Status", "Jurisdictions", "Active clients", "Earned", "Tasks"):
        table.add_column(column)
    for row in result.rows:
        e = row.expert
        table.add_row(
            e.id,
            escape(e.full_name),
            e.status.value,
            ", ".join(e.jurisdictions),
            str(row.active_clients),
            _total(row.total_earned),
            str(row.task_count),
        )
    console.print(table)
    _report_failures(result)


def cmd_experts_show(args):
    """Show one expert's drill-down."""
    _, views = get_services(args)
    detail = views.expert_detail(args.expert_id)

    if args.json:
        _print_json(detail.to_dict())
        return

    e = detail.expert
    console.print(f"\n[bold]{escape(e.full_name)}[/bold] <{escape(e.email)}>")
    console.print(f"Status: {e.status.value}")
    console.print(f"Rating: {e.rating if e.rating is not None else '-'}")
    console.print(f"Completed tasks: {detail.completed_tasks}")

    table = Table(title="Active clients")
    table.add_column("Client")
    table.add_column("Jurisdiction")
    table.add_column("Earnings")
    for a in detail.active_assignments:
        table.add_row(
            escape(detail.client_names.get(a.client_id, "Unknown")),
            escape(a.jurisdiction),
            _money(a.earnings),
        )
    console.print(table)

    monthly = Table(title="Monthly earnings")
    monthly.add_column("Month")
    monthly.add_column("Earned")
    for bucket in detail.monthly:
        monthly.add_row(bucket.long_label, _money(bucket.amount))
    console.print(monthly)
    _report_failures(detail)


def cmd_earnings(args):
    """Show an expert's dashboard earnings."""
    _, views = get_services(args)
    dashboard = views.expert_dashboard(args.expert)

    if args.json:
        _print_json(dashboard.to_dict())
        return

    stats = dashboard.stats
    console.print("\n=== Earnings ===\n")
    console.print(f"Active clients: {stats.active_clients}")
    console.print(f"Jurisdictions: {stats.jurisdictions}")
    console.print(f"Month to date: {_total(dashboard.month_to_date)}")
    console.print(f"Quarter to date: {_total(stats.quarter_earnings)}")
    console.print(f"Pending invoices: {_total(dashboard.pending)}")

    table = Table(title="Last months")
    table.add_column("Month")
    table.add_column("Earned")
    for bucket in dashboard.monthly:
        table.add_row(bucket.long_label, _money(bucket.amount))
    console.print(table)

    if dashboard.urgent:
        console.print("\n--- Due soon ---")
        for task in dashboard.urgent:
            flag = " [red](overdue)[/red]" if task.is_overdue else ""
            console.print(f"  {task.due_date.isoformat()}  {escape(task.title)} - {escape(task.client_name)}{flag}")
    _report_failures(dashboard)


# === Billing Commands ===

def cmd_payments_record(args):
    """Record a payment and credit its assignment."""
    store, _ = get_services(args)
    payment = EngagementService(store).record_payment({
        "expert_id": args.expert,
        "client_id": args.client,
        "amount": args.amount,
        "currency": args.currency,
        "jurisdiction": args.jurisdiction,
        "payment_date": args.date,
        "description": args.description or "",
    })
    console.print(f"Payment recorded: {payment.id} ({_money(payment.amount, payment.currency)})")


# === Analytics Commands ===

def cmd_pipeline(args):
    """Show the pipeline funnel."""
    store, _ = get_services(args)
    clients = store.select("clients")
    buckets = bucket_by_stage(clients)

    if args.json:
        _print_json({
            "buckets": [b.to_dict() for b in buckets],
            "unstaged": unstaged_count(clients),
            "dropoff": [d.to_dict() for d in stage_dropoff(buckets)],
        })
        return

    table = Table(title="Pipeline")
    table.add_column("Stage")
    table.add_column("Clients", justify="right")
    table.add_column("Share", justify="right")
    for bucket in buckets:
        table.add_row(bucket.stage.value, str(bucket.count), f"{bucket.percentage}%")
    console.print(table)
    console.print(f"Not set: {unstaged_count(clients)}")


def cmd_overview(args):
    """Show the platform overview."""
    _, views = get_services(args)
    overview = views.platform_overview()

    if args.json:
        _print_json(overview.to_dict())
        return

    console.print("\n=== Platform Overview ===\n")
    for name, value in overview.totals.items():
        console.print(f"{name.replace('_', ' ').title()}: {value}")

    console.print("\n--- Revenue ---")
    for window, total in overview.revenue.items():
        console.print(f"{window.replace('_', ' ').title()}: {_total(total)}")
    console.print(f"Pending: {_total(overview.pending)}")
    console.print(f"MRR: {_money(overview.metrics['mrr'])}")

    console.print("\n--- Operations ---")
    console.print(f"Retention: {overview.metrics['retention_rate']:.1f}%")
    console.print(f"Conversion: {overview.metrics['conversion_rate']:.1f}%")
    console.print(f"Task completion: {overview.metrics['task_completion_rate']:.1f}%")
    console.print(f"Avg completion days: {overview.metrics['avg_completion_days']:.1f}")

    if overview.recent_activity:
        console.print("\n--- Recent activity ---")
        for entry in overview.recent_activity:
            console.print(f"  {entry.created_at:%Y-%m-%d %H:%M}  {entry.action}: {escape(entry.details or '')}")
    _report_failures(overview)


def cmd_check(args):
    """Report data inconsistencies. Exits 1 if any are found."""
    store, _ = get_services(args)
    violations = find_invariant_violations(
        store.select("assignments"),
        tasks=store.select("tasks"),
        invoices=store.select("invoices"),
        payments=store.select("payments"),
    )

    if args.json:
        _print_json([v.to_dict() for v in violations])
    elif not violations:
        console.print("No inconsistencies found.")
    else:
        for v in violations:
            console.print(escape(f"[{v.kind}] {v.message}"))

    if violations:
        sys.exit(1)


# === Main CLI ===

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger",
        description="Engagement and earnings ledger CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  List clients:    ledger clients list --country UK --sort revenue
  Add client:      ledger clients add --expert EXPERT_ID --name "Jane Doe" --email jane@example.com --countries UK,France
  Expert detail:   ledger experts show EXPERT_ID
  Record payment:  ledger payments record --expert EXPERT_ID --client CLIENT_ID --amount 400
  Overview:        ledger --json overview
        """
    )
    parser.add_argument("--config", type=Path, help="Path to a YAML settings file")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Clients
    clients_parser = subparsers.add_parser("clients", help="Client management")
    clients_sub = clients_parser.add_subparsers(dest="clients_command")

    clients_list = clients_sub.add_parser("list", help="List clients (admin table)")
    clients_list.add_argument("--search", help="Match name or email")
    clients_list.add_argument("--status", help="Pipeline stage or overall status")
    clients_list.add_argument("--country", help="Listed country")
    clients_list.add_argument("--complexity", help="Complexity level")
    clients_list.add_argument("--expert", help="Assigned expert name")
    clients_list.add_argument("--sort", default="created_at", choices=[f.value for f in SortField])
    clients_list.add_argument("--asc", action="store_true", help="Sort ascending")
    clients_list.add_argument("--page", type=int, default=1)
    clients_list.set_defaults(func=cmd_clients_list)

    clients_mine = clients_sub.add_parser("mine", help="List an expert's clients")
    clients_mine.add_argument("--expert", required=True, help="Viewing expert ID")
    clients_mine.add_argument("--all", action="store_true", help="Include ended assignments")
    clients_mine.set_defaults(func=cmd_clients_mine)

    clients_add = clients_sub.add_parser("add", help="Add a client")
    clients_add.add_argument("--expert", required=True, help="Creating expert ID")
    clients_add.add_argument("--name", required=True, help="Client full name")
    clients_add.add_argument("--email", required=True, help="Client email")
    clients_add.add_argument("--countries", required=True, help="Comma-separated countries, primary first")
    clients_add.add_argument("--phone")
    clients_add.add_argument("--assets", help="Comma-separated asset types")
    clients_add.add_argument("--tax-years", help="Comma-separated tax years")
    clients_add.add_argument("--complexity", help="Simple, Moderate, Complex, ...")
    clients_add.set_defaults(func=cmd_clients_add)

    clients_stage = clients_sub.add_parser("stage", help="Set a client's pipeline stage")
    clients_stage.add_argument("client", help="Client ID")
    clients_stage.add_argument("stage", nargs="?", help="Stage name; omit to clear")
    clients_stage.set_defaults(func=cmd_stage)

    # Assign
    assign_parser = subparsers.add_parser("assign", help="Assign an expert to a client")
    assign_parser.add_argument("--client", required=True, help="Client ID")
    assign_parser.add_argument("--expert", required=True, help="Expert ID")
    assign_parser.add_argument("--jurisdiction", required=True)
    assign_parser.set_defaults(func=cmd_assign)

    # Experts
    experts_parser = subparsers.add_parser("experts", help="Expert management")
    experts_sub = experts_parser.add_subparsers(dest="experts_command")

    experts_list = experts_sub.add_parser("list", help="List experts")
    experts_list.add_argument("--search", help="Match name or email")
    experts_list.set_defaults(func=cmd_experts_list)

    experts_show = experts_sub.add_parser("show", help="Show expert detail")
    experts_show.add_argument("expert_id", help="Expert ID")
    experts_show.set_defaults(func=cmd_experts_show)

    # Earnings
    earnings_parser = subparsers.add_parser("earnings", help="Expert earnings dashboard")
    earnings_parser.add_argument("--expert", required=True, help="Expert ID")
    earnings_parser.set_defaults(func=cmd_earnings)

    # Payments
    payments_parser = subparsers.add_parser("payments", help="Payment management")
    payments_sub = payments_parser.add_subparsers(dest="payments_command")

    payments_record = payments_sub.add_parser("record", help="Record a payment")
    payments_record.add_argument("--expert", required=True, help="Expert ID")
    payments_record.add_argument("--client", help="Client ID")
    payments_record.add_argument("--amount", type=float, required=True)
    payments_record.add_argument("--currency", default="GBP")
    payments_record.add_argument("--jurisdiction", help="Needed when the pair has several assignments")
    payments_record.add_argument("--date", type=datetime.fromisoformat, help="Payment date (ISO format)")
    payments_record.add_argument("--description")
    payments_record.set_defaults(func=cmd_payments_record)

    # Analytics
    pipeline_parser = subparsers.add_parser("pipeline", help="Show the pipeline funnel")
    pipeline_parser.set_defaults(func=cmd_pipeline)

    overview_parser = subparsers.add_parser("overview", help="Show the platform overview")
    overview_parser.set_defaults(func=cmd_overview)

    check_parser = subparsers.add_parser("check", help="Check data consistency")
    check_parser.set_defaults(func=cmd_check)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.config = load_config(args.config)
    except (OSError, yaml.YAMLError, jsonschema.ValidationError) as e:
        message = e.message if isinstance(e, jsonschema.ValidationError) else str(e)
        console.print(f"[red]Error:[/red] invalid settings: {escape(message)}")
        sys.exit(1)
    configure_logging(args.config.log_level)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except EngagementError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    main()
