#!/usr/bin/env python3
"""
portforward CLI

Forwards local ports to remote hosts with iptables NAT rules described
in a small config file.

Usage:
    sudo portforward [forward]      Install the configured forwards
    sudo portforward cleanup        Remove them again
    portforward plan                Show the rules that would be used
    portforward check               Validate the config file
"""

import argparse
import logging
import sys
import traceback
from pathlib import Path
from typing import Dict, List

from rich.console import Console
from rich.markup import escape

from . import report
from .config import Settings, load_settings, read_forward_config, settings_as_dict
from .errors import InvalidTargetFormat, PortForwardError
from .firewall.intent import resolve_intent
from .firewall.reconcile import INSTALL, REMOVE, Reconciler
from .firewall.rules import derive_rules
from .firewall.store import DryRunRuleStore, IptablesRuleStore
from .system.checks import enable_ip_forwarding, preflight, run_lock
from .system.network import probe_network_context
from .utils import command_exists, setup_logging

console = Console()
logger = logging.getLogger(__name__)


def _load_entries(settings: Settings):
    return read_forward_config(
        settings.config_file,
        auto_continue=settings.auto_continue,
        reject_duplicates=settings.reject_duplicate_ports,
    )


def _resolvable_intents(entries) -> List:
    intents = []
    for entry in entries:
        try:
            intents.append(resolve_intent(entry.local_port, entry.raw_target))
        except InvalidTargetFormat:
            continue
    return intents


def run_pass(args, settings: Settings, mode: str) -> int:
    """Run one install or remove pass and print the summary."""
    preflight()
    entries = _load_entries(settings)
    context = probe_network_context(timeout=settings.command_timeout)

    has_v6 = any(i.address_family == "v6" for i in _resolvable_intents(entries))
    if has_v6 and not command_exists("ip6tables"):
        logger.warning("ip6tables is not installed; IPv6 forwards will fail")

    with run_lock(settings.lock_file):
        if mode == INSTALL and settings.enable_ip_forwarding and not args.dry_run:
            enable_ip_forwarding(
                ipv6=has_v6 and context.ipv6_address is not None,
                timeout=settings.command_timeout,
            )

        store_cls = DryRunRuleStore if args.dry_run else IptablesRuleStore
        reconciler = Reconciler(store_cls(timeout=settings.command_timeout), context)
        result = reconciler.run(entries, mode)

    if args.json:
        report.render_json(result)
    else:
        report.render_summary(result)

    # Per-mapping failures are reported, not escalated
    return 0


def cmd_forward(args, settings: Settings) -> int:
    return run_pass(args, settings, INSTALL)


def cmd_cleanup(args, settings: Settings) -> int:
    return run_pass(args, settings, REMOVE)


def cmd_plan(args, settings: Settings) -> int:
    """Show derived rules without touching iptables."""
    entries = _load_entries(settings)
    context = probe_network_context(timeout=settings.command_timeout)

    plan = []
    errors: Dict[str, str] = {}
    for entry in entries:
        try:
            intent = resolve_intent(entry.local_port, entry.raw_target)
        except InvalidTargetFormat as e:
            errors[entry.local_port] = str(e)
            continue
        for protocol in intent.protocols:
            plan.append((intent, protocol, derive_rules(intent, protocol, context)))

    plan.sort(key=lambda item: (item[0].local_port, item[1]))
    report.render_plan(plan, errors)
    return 0


def cmd_check(args, settings: Settings) -> int:
    """Parse and resolve the config file."""
    entries = _load_entries(settings)
    if args.verbose:
        for key, value in settings_as_dict(settings).items():
            console.print(f"[dim]{key}: {value}[/dim]")

    rows = []
    for entry in entries:
        try:
            rows.append((entry.local_port, entry.raw_target,
                         resolve_intent(entry.local_port, entry.raw_target), ""))
        except InvalidTargetFormat as e:
            rows.append((entry.local_port, entry.raw_target, None, str(e)))

    if not rows:
        console.print(f"[yellow]No mappings configured in {settings.config_file}[/yellow]")
        return 0

    report.render_check(rows)
    invalid = sum(1 for row in rows if row[2] is None)
    if invalid:
        console.print(f"[red]{invalid} invalid mapping(s)[/red]")
        return 1
    console.print(f"[green]✓[/green] {len(rows)} mapping(s) OK")
    return 0


HANDLERS = {
    "forward": cmd_forward,
    "cleanup": cmd_cleanup,
    "plan": cmd_plan,
    "check": cmd_check,
}


def build_parser() -> argparse.ArgumentParser:
    from . import __version__

    parser = argparse.ArgumentParser(
        prog="portforward",
        description="Forward local ports to remote hosts with iptables NAT rules",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", type=Path, help="Forwarding config file")
    parser.add_argument("--settings", type=Path, help="Settings YAML file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--debug", action="store_true", help="Show tracebacks on errors")
    parser.add_argument("--cleanup", action="store_true", help="Same as the cleanup command")
    parser.set_defaults(command=None, dry_run=False, json=False)

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    for name, help_text in [("forward", "Install port forwards"),
                            ("cleanup", "Remove port forwards")]:
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("--dry-run", action="store_true", help="Check rules but change nothing")
        p.add_argument("--json", action="store_true", help="Print the summary as JSON")

    subparsers.add_parser("plan", help="Show the rules each mapping produces")
    subparsers.add_parser("check", help="Validate the config file")

    return parser


def main(argv=None) -> int:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cleanup:
        if args.command not in (None, "cleanup"):
            parser.error("--cleanup cannot be combined with another command")
        args.command = "cleanup"
    elif args.command is None:
        args.command = "forward"

    try:
        settings = load_settings(args.settings)
        if args.config:
            settings.config_file = args.config

        level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level)
        setup_logging(level, settings.log_file)

        return HANDLERS[args.command](args, settings)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130
    except PortForwardError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        if args.debug:
            console.print("[dim]" + traceback.format_exc() + "[/dim]")
        return 1
    except Exception as e:
        console.print(f"\n[red]Fatal error: {escape(str(e))}[/red]")
        if args.debug:
            console.print("[dim]" + traceback.format_exc() + "[/dim]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
