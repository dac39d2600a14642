"""
Session host port and the tmux adapter.

Every call is synchronous and may block on tmux. There are no
retries here; the lifecycle executor decides what is fatal.

Usage:
    host = TmuxSessionHost()
    if host.exists("gt-wyvern-witness"):
        host.kill("gt-wyvern-witness")
    host.create("gt-wyvern-witness", Path("~/gt/wyvern").expanduser())
    host.send("gt-wyvern-witness", "exec claude")
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import proc
from .errors import CommandError, SessionHostError

logger = logging.getLogger("deacon.session_host")


# ---------------------------------------------------------------------------
# Themes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Theme:
    """Status-bar colours for a session.

    Attributes:
        name: Palette entry name.
        bg: tmux background colour.
        fg: tmux foreground colour.
    """

    name: str
    bg: str
    fg: str

    @property
    def style(self) -> str:
        return f"bg={self.bg},fg={self.fg}"


PALETTE: tuple[Theme, ...] = (
    Theme("ocean", "colour24", "colour255"),
    Theme("forest", "colour22", "colour255"),
    Theme("rust", "colour130", "colour255"),
    Theme("plum", "colour96", "colour255"),
    Theme("slate", "colour60", "colour255"),
    Theme("ember", "colour88", "colour255"),
    Theme("olive", "colour58", "colour255"),
    Theme("teal", "colour30", "colour255"),
)

MAYOR_THEME = Theme("mayor", "colour136", "colour232")


def assign_theme(rig: str) -> Theme:
    """Pick a palette entry for a rig; the same rig always gets the same theme."""
    digest = hashlib.sha256(rig.encode("utf-8")).digest()
    return PALETTE[int.from_bytes(digest[:4], "big") % len(PALETTE)]


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------


class SessionHost:
    """Abstract host for named, persistent terminal sessions.

    Implementations raise SessionHostError when an operation fails.
    """

    def exists(self, name: str) -> bool:
        raise NotImplementedError

    def kill(self, name: str) -> None:
        """Kill a session. Succeeds trivially if it does not exist."""
        raise NotImplementedError

    def create(self, name: str, directory: Path) -> None:
        """Start a detached session whose shell runs in ``directory``."""
        raise NotImplementedError

    def set_environment(self, name: str, key: str, value: str) -> None:
        raise NotImplementedError

    def apply_theme(
        self,
        name: str,
        theme: Theme,
        rig: str = "",
        worker: str = "",
        role: str = "",
    ) -> None:
        raise NotImplementedError

    def send(self, name: str, line: str) -> None:
        """Type ``line`` into the session followed by Enter."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# tmux
# ---------------------------------------------------------------------------


class TmuxSessionHost(SessionHost):
    """SessionHost driven through the ``tmux`` command.

    Args:
        timeout: Optional per-command timeout in seconds.
        binary: Name or path of the tmux executable.
    """

    def __init__(self, timeout: Optional[float] = None, binary: str = "tmux"):
        self.timeout = timeout
        self.binary = binary

    def _tmux(self, *args: str) -> str:
        try:
            return proc.run([self.binary, *args], timeout=self.timeout)
        except CommandError as exc:
            raise SessionHostError(str(exc)) from exc

    def exists(self, name: str) -> bool:
        try:
            proc.run([self.binary, "has-session", "-t", f"={name}"], timeout=self.timeout)
        except CommandError as exc:
            # Reason: has-session exits 1 for a missing session or no server
            if exc.returncode is not None:
                return False
            raise SessionHostError(str(exc)) from exc
        return True

    def kill(self, name: str) -> None:
        if not self.exists(name):
            return
        try:
            self._tmux("kill-session", "-t", f"={name}")
        except SessionHostError:
            if self.exists(name):
                raise
        logger.debug("tmux session %s killed", name)

    def create(self, name: str, directory: Path) -> None:
        self._tmux("new-session", "-d", "-s", name, "-c", str(directory))

    def set_environment(self, name: str, key: str, value: str) -> None:
        self._tmux("set-environment", "-t", name, key, value)

    def apply_theme(
        self,
        name: str,
        theme: Theme,
        rig: str = "",
        worker: str = "",
        role: str = "",
    ) -> None:
        label = f"{rig}/{worker}" if rig else worker
        self._tmux("set-option", "-t", name, "status-style", theme.style)
        self._tmux("set-option", "-t", name, "status-left-length", "40")
        self._tmux("set-option", "-t", name, "status-left", f" [{label}] ")
        if role:
            self._tmux("set-option", "-t", name, "status-right", f" {role} ")

    def send(self, name: str, line: str) -> None:
        self._tmux("send-keys", "-t", name, line, "Enter")
