"""Summary rendering for reconciliation passes."""

import json
from typing import Dict, List, Optional, Tuple

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .firewall.intent import ForwardingIntent
from .firewall.reconcile import INSTALL, ReconcileResult
from .firewall.rules import RuleSpec

console = Console()


def summary_dict(result: ReconcileResult) -> Dict:
    """Succeeded/failed partitions keyed by 'port/protocol'."""
    reasons = {r.key: r.reason.value for r in result.failures if r.reason}
    return {
        "mode": result.mode,
        "dry_run": result.dry_run,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "reasons": reasons,
    }


def render_json(result: ReconcileResult, out: Optional[Console] = None) -> None:
    out = out or console
    out.print_json(json.dumps(summary_dict(result)))


def render_summary(result: ReconcileResult, out: Optional[Console] = None) -> None:
    """Print the succeeded and failed mappings of a pass."""
    out = out or console
    out.print()
    out.print("[bold blue]Summary:[/bold blue]")

    if result.dry_run:
        action = "would forward" if result.mode == INSTALL else "would remove"
    else:
        action = "forwarded" if result.mode == INSTALL else "removed"

    succeeded = result.succeeded
    if succeeded:
        table = Table(show_header=True, header_style="bold green", title=f"Successful ({action})")
        table.add_column("Port/Proto")
        table.add_column("Target")
        for key, target in succeeded.items():
            table.add_row(key, escape(target))
        out.print(table)
    else:
        out.print("[green]Successful:[/green] none")

    failures = result.failures
    if failures:
        table = Table(show_header=True, header_style="bold red", title="Failed")
        table.add_column("Port/Proto")
        table.add_column("Target")
        table.add_column("Reason")
        table.add_column("Detail", overflow="fold")
        for record in failures:
            reason = record.reason.value if record.reason else ""
            table.add_row(record.key, escape(record.raw_target), reason, escape(record.detail))
        out.print(table)
    else:
        out.print("[red]Failed:[/red] none")


def render_plan(plan: List[Tuple[ForwardingIntent, str, List[RuleSpec]]],
                errors: Dict[str, str],
                out: Optional[Console] = None) -> None:
    """Print the rules each entry would produce."""
    out = out or console
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Port/Proto")
    table.add_column("Target")
    table.add_column("Rule", overflow="fold")

    for intent, protocol, rules in plan:
        key = f"{intent.local_port}/{protocol}"
        if not rules:
            table.add_row(key, escape(intent.raw_target), "[yellow]skipped: no IPv6 source address[/yellow]")
            continue
        for rule in rules:
            table.add_row(key, escape(intent.raw_target), escape(rule.to_iptables()))
            key = ""

    out.print(table)
    for port, error in errors.items():
        out.print(f"[red]✗[/red] {escape(port)}: {escape(error)}")


def render_check(intents: List[Tuple[str, str, Optional[ForwardingIntent], str]],
                 out: Optional[Console] = None) -> None:
    """Print each configured entry with its resolved form or error."""
    out = out or console
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Port")
    table.add_column("Target")
    table.add_column("Protocols")
    table.add_column("Destination")
    table.add_column("Family")

    for port, raw_target, intent, error in intents:
        if intent is None:
            table.add_row(escape(port), escape(raw_target), "", f"[red]{escape(error)}[/red]", "")
        else:
            table.add_row(escape(port), escape(raw_target), ",".join(intent.protocols),
                          escape(intent.destination), intent.address_family)

    out.print(table)
