"""
Pre-restart workspace synchronization.

Agents with a persistent working clone (refinery, crew) get a fresh
fetch, a rebase onto the main branch, and a tracker sync before their
new session starts. Every step is best-effort: a failure is logged and
the next step still runs. The new session resolves leftover conflicts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from . import proc
from .errors import DeaconError

logger = logging.getLogger("deacon.workspace")


class RepositorySync:
    """Abstract version-control operations run inside a working clone."""

    def fetch(self, work_dir: Path, remote: str) -> None:
        raise NotImplementedError

    def pull_rebase(self, work_dir: Path, remote: str, branch: str) -> None:
        raise NotImplementedError


class TrackerSync:
    """Abstract sync of the issue tracker's local mirror."""

    def sync(self, work_dir: Path) -> None:
        raise NotImplementedError


class GitRepositorySync(RepositorySync):
    def __init__(self, timeout: Optional[float] = None, binary: str = "git"):
        self.timeout = timeout
        self.binary = binary

    def fetch(self, work_dir: Path, remote: str) -> None:
        proc.run([self.binary, "fetch", remote], cwd=work_dir, timeout=self.timeout)

    def pull_rebase(self, work_dir: Path, remote: str, branch: str) -> None:
        proc.run(
            [self.binary, "pull", "--rebase", remote, branch],
            cwd=work_dir,
            timeout=self.timeout,
        )


class BeadsTrackerSync(TrackerSync):
    def __init__(self, timeout: Optional[float] = None, binary: str = "bd"):
        self.timeout = timeout
        self.binary = binary

    def sync(self, work_dir: Path) -> None:
        proc.run([self.binary, "sync"], cwd=work_dir, timeout=self.timeout)


class WorkspaceSynchronizer:
    """Runs fetch, pull --rebase and tracker sync in a working clone.

    Args:
        repo: Version-control adapter.
        tracker: Issue-tracker adapter.
        remote: Upstream remote name.
        branch: Main integration branch.
    """

    def __init__(
        self,
        repo: RepositorySync,
        tracker: TrackerSync,
        remote: str = "origin",
        branch: str = "main",
    ) -> None:
        self.repo = repo
        self.tracker = tracker
        self.remote = remote
        self.branch = branch

    def sync(self, work_dir: Path) -> dict[str, bool]:
        """Synchronize a workspace, continuing past failures.

        Args:
            work_dir: The agent's working clone.

        Returns:
            dict: Step name -> whether it succeeded.
        """
        steps = [
            ("fetch", lambda: self.repo.fetch(work_dir, self.remote)),
            ("pull", lambda: self.repo.pull_rebase(work_dir, self.remote, self.branch)),
            ("tracker", lambda: self.tracker.sync(work_dir)),
        ]
        report: dict[str, bool] = {}
        for name, step in steps:
            try:
                step()
                report[name] = True
            except (DeaconError, OSError) as exc:
                logger.warning("Workspace %s failed in %s: %s", name, work_dir, exc)
                report[name] = False
        return report
