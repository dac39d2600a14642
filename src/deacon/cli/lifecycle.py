"""Lifecycle commands: process, resolve, record, pending, clear-pending."""

from __future__ import annotations

import json
import sys

import click
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ._common import config_for, console, outcome_style, town_root_option


def register_lifecycle_commands(main: click.Group) -> None:
    """Register the lifecycle command group."""

    @main.group()
    def lifecycle():
        """Inspect and drive lifecycle request handling.

        Agents ask for a restart, cycle, or shutdown by mailing the
        deacon with a LIFECYCLE: subject after setting
        requesting_<action>=true in their state.json.
        """

    @lifecycle.command("process")
    @town_root_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def lifecycle_process(town_root: str, json_out: bool):
        """Run a single heartbeat pass over the deacon inbox."""
        from ..lifecycle import LifecycleSupervisor

        config = config_for(town_root)
        supervisor = LifecycleSupervisor.from_config(config)
        outcomes = supervisor.process_requests()

        if json_out:
            click.echo(json.dumps([o.model_dump(mode="json") for o in outcomes], indent=2))
            return

        if not outcomes:
            console.print("\n  [dim]No lifecycle requests.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Message", style="cyan")
        table.add_column("From")
        table.add_column("Action")
        table.add_column("Result")
        table.add_column("Detail", style="dim")
        for o in outcomes:
            table.add_row(
                o.message_id or "-",
                o.sender,
                o.action.value if o.action else "",
                Text(o.status.value.upper(), style=outcome_style(o.status)),
                o.detail,
            )
        console.print()
        console.print(table)
        console.print()

    @lifecycle.command("resolve")
    @click.argument("identity")
    @town_root_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def lifecycle_resolve(identity: str, town_root: str, json_out: bool):
        """Show every address derived from an agent IDENTITY."""
        from ..identity import parse_identity

        config = config_for(town_root)
        parsed = parse_identity(identity)
        state_path = parsed.state_path(config.town_root)
        work_dir = parsed.work_dir(config.town_root)
        data = {
            "identity": identity,
            "role": parsed.role.value,
            "rig": parsed.rig or None,
            "member": parsed.member or None,
            "session": parsed.session_name(config.session_prefix),
            "state_path": str(state_path) if state_path else None,
            "status_record_id": parsed.status_record_id(),
            "actor_path": parsed.actor_path(),
            "work_dir": str(work_dir) if work_dir else None,
            "needs_presync": parsed.needs_presync,
        }

        if json_out:
            click.echo(json.dumps(data, indent=2))
        elif not parsed.resolved:
            console.print(f"\n  [yellow]Unresolved identity:[/] {identity}\n")
        else:
            lines = "\n".join(f"{k}: [bold]{v}[/]" for k, v in data.items() if v is not None)
            console.print()
            console.print(Panel(lines, title=f"[cyan]{identity}[/]", border_style="cyan"))
            console.print()

        if not parsed.resolved:
            sys.exit(1)

    @lifecycle.command("record")
    @click.argument("identity")
    @town_root_option
    def lifecycle_record(identity: str, town_root: str):
        """Show the external status record for IDENTITY (best effort)."""
        from ..errors import StatusRecordError
        from ..identity import parse_identity
        from ..status_records import BeadsStatusReader

        config = config_for(town_root)
        parsed = parse_identity(identity)
        record_id = parsed.status_record_id()
        if record_id is None:
            console.print(f"\n  [yellow]Unresolved identity:[/] {identity}\n")
            sys.exit(1)

        reader = BeadsStatusReader(config.town_root, timeout=config.command_timeout)
        try:
            record = reader.fetch(record_id)
        except StatusRecordError as exc:
            console.print(f"\n  [yellow]No status record:[/] {exc}\n")
            return

        console.print()
        console.print(
            Panel(
                f"State: [bold]{record.agent_state or '-'}[/]\n"
                f"Role: {record.role_type or '-'}  Rig: {record.rig or '-'}\n"
                f"Hook: {record.hook_bead or '-'}\n"
                f"Updated: {record.updated_at or '-'}",
                title=f"[cyan]{record.id}[/]",
                border_style="cyan",
            )
        )
        console.print()

    @lifecycle.command("pending")
    @town_root_option
    def lifecycle_pending(town_root: str):
        """Show sessions waiting to be recreated and recent alerts."""
        from ..ledger import LifecycleLedger

        config = config_for(town_root)
        ledger = LifecycleLedger(config.ledger_file)
        entries = ledger.pending(include_escalated=True)

        if not entries and not ledger.data.alerts:
            console.print("\n  [dim]Nothing pending.[/]\n")
            return

        if entries:
            table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
            table.add_column("Identity", style="cyan")
            table.add_column("Action")
            table.add_column("Attempts")
            table.add_column("State")
            table.add_column("Last error", style="dim")
            for e in entries:
                state = Text("ESCALATED", style="bold red") if e.escalated else Text("RETRYING", style="yellow")
                table.add_row(e.identity, e.action.value, str(e.attempts), state, e.last_error)
            console.print()
            console.print(table)

        if ledger.data.alerts:
            console.print(f"\n[yellow]Alerts ({len(ledger.data.alerts)}):[/]")
            for alert in ledger.data.alerts[-5:]:
                console.print(f"  [dim]{alert}[/]")
        console.print()

    @lifecycle.command("clear-pending")
    @click.argument("identity", required=False)
    @town_root_option
    def lifecycle_clear_pending(identity, town_root: str):
        """Forget pending recreations (all, or just IDENTITY)."""
        from ..ledger import LifecycleLedger

        config = config_for(town_root)
        ledger = LifecycleLedger(config.ledger_file)
        if identity:
            if ledger.resolve(identity):
                console.print(f"[green]Cleared pending recreation for {identity}.[/]")
            else:
                console.print(f"[yellow]Nothing pending for {identity}.[/]")
            return
        count = ledger.clear_pending()
        console.print(f"[green]Cleared {count} pending recreation(s).[/]")
