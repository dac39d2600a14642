"""
Deacon CLI: lifecycle supervisor command line.

Each command group lives in its own module and is attached to the
main Click group through a register function.

Entry point: deacon.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="deacon")
def main():
    """Deacon restarts, cycles, and shuts down agent sessions on request."""


# ---------------------------------------------------------------------------
# Register all command groups from modular files
# ---------------------------------------------------------------------------

from .daemon import register_daemon_commands
from .lifecycle import register_lifecycle_commands

register_daemon_commands(main)
register_lifecycle_commands(main)
