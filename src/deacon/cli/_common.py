"""Shared utilities for the CLI command modules.

Provides the Rich console instance, the --town-root option, and
outcome formatting used by more than one command group.
"""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from .. import TOWN_ROOT
from ..config import DeaconConfig, load_config
from ..models import OutcomeStatus

console = Console()

town_root_option = click.option(
    "--town-root",
    default=TOWN_ROOT,
    type=click.Path(),
    show_default=True,
    help="Town root directory.",
)


def config_for(town_root: str, **overrides) -> DeaconConfig:
    """Load the config for a --town-root value."""
    return load_config(Path(town_root).expanduser(), **overrides)


def outcome_style(status: OutcomeStatus) -> str:
    """Map an outcome status to a Rich style."""
    return {
        OutcomeStatus.COMPLETED: "bold green",
        OutcomeStatus.IGNORED: "dim",
        OutcomeStatus.STALE: "yellow",
        OutcomeStatus.BLOCKED: "yellow",
        OutcomeStatus.UNRESOLVED: "yellow",
        OutcomeStatus.NEEDS_RECREATE: "bold yellow",
        OutcomeStatus.FAILED: "bold red",
        OutcomeStatus.ESCALATED: "bold red",
    }.get(status, "dim")
