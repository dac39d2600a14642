"""Daemon commands: start, stop, status."""

from __future__ import annotations

import json
import os
import sys

import click
from rich.panel import Panel

from ._common import config_for, console, town_root_option


def register_daemon_commands(main: click.Group) -> None:
    """Register the daemon command group."""

    @main.group()
    def daemon():
        """Background heartbeat for the lifecycle supervisor.

        Polls the deacon inbox on every heartbeat and exposes a local
        status API.
        """

    @daemon.command("start")
    @town_root_option
    @click.option("--port", default=None, type=int, help="API port (default from config: 7778).")
    @click.option("--interval", default=None, type=int, help="Heartbeat interval in seconds.")
    def daemon_start(town_root: str, port, interval):
        """Start the deacon daemon in the foreground.

        Runs until SIGTERM or Ctrl+C. Use a service manager to run it
        in the background.
        """
        from ..daemon import DaemonService, is_running

        config = config_for(town_root, api_port=port, heartbeat_interval=interval)
        if not config.town_root.is_dir():
            console.print(f"[bold red]Town root not found:[/] {config.town_root}")
            sys.exit(1)

        if is_running(config):
            console.print("[yellow]Daemon is already running.[/]")
            sys.exit(0)

        svc = DaemonService(config)

        console.print(f"\n  [green]Starting deacon[/] on port [cyan]{config.api_port}[/]")
        console.print(f"  Heartbeat: {config.heartbeat_interval}s")
        console.print(f"  Log: {config.log_file}")
        console.print(f"  PID: {os.getpid()}")
        console.print("  [dim]Running in foreground (Ctrl+C to stop)[/]\n")
        svc.start()
        svc.run_forever()

    @daemon.command("stop")
    @town_root_option
    def daemon_stop(town_root: str):
        """Stop the running daemon."""
        from ..daemon import read_pid

        config = config_for(town_root)
        pid = read_pid(config)

        if pid is None:
            console.print("[yellow]Daemon is not running.[/]")
            return

        import signal as sig

        try:
            os.kill(pid, sig.SIGTERM)
            console.print(f"\n  [green]Sent SIGTERM to daemon (PID {pid})[/]\n")
        except ProcessLookupError:
            console.print("[yellow]Daemon process not found, cleaning up PID file.[/]")
            config.pid_file.unlink(missing_ok=True)

    @daemon.command("status")
    @town_root_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def daemon_status(town_root: str, json_out: bool):
        """Show daemon status."""
        from ..daemon import get_daemon_status, read_pid

        config = config_for(town_root)
        pid = read_pid(config)

        if pid is None:
            if json_out:
                click.echo(json.dumps({"running": False}))
            else:
                console.print("\n  [yellow]Daemon is not running.[/]\n")
            return

        status = get_daemon_status(config.api_port)
        if json_out:
            click.echo(json.dumps(status or {"running": True, "pid": pid, "api": "unreachable"}, indent=2))
            return

        if not status:
            console.print(f"\n  [green]Daemon running[/] (PID {pid})")
            console.print(f"  [yellow]API unreachable on port {config.api_port}[/]\n")
            return

        uptime = status.get("uptime_seconds", 0)
        h, remainder = divmod(int(uptime), 3600)
        m, s = divmod(remainder, 60)
        uptime_str = f"{h}h {m}m {s}s" if h else f"{m}m {s}s"
        outcomes = status.get("outcomes", {})

        console.print()
        console.print(
            Panel(
                f"PID: [bold]{status.get('pid')}[/]\n"
                f"Uptime: [bold]{uptime_str}[/]\n"
                f"Heartbeats: [bold]{status.get('heartbeats', 0)}[/]\n"
                f"Completed: [bold]{outcomes.get('completed', 0)}[/]  "
                f"Blocked: [bold]{outcomes.get('blocked', 0)}[/]  "
                f"Failed: [bold]{outcomes.get('failed', 0)}[/]\n"
                f"Last heartbeat: {status.get('last_heartbeat') or '[dim]never[/]'}\n"
                f"API: [green]http://127.0.0.1:{config.api_port}[/]",
                title="[green]Deacon Running[/]",
                border_style="green",
            )
        )

        errors = status.get("recent_errors", [])
        if errors:
            console.print(f"\n[yellow]Recent errors ({len(errors)}):[/]")
            for err in errors[-5:]:
                console.print(f"  [dim]{err}[/]")
        console.print()
