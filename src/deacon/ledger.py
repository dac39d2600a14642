"""
Recovery ledger: what the supervisor must remember between heartbeats.

Two things outlive a single pass:

* pending recreations: the old session was killed but the new one
  never came up, so the next heartbeat retries it;
* delete failures: a message that cannot be claimed is executed at
  most ``max_delete_failures`` times before the supervisor gives up
  and raises an alert instead.

Stored as JSON at ``<town-root>/deacon/lifecycle.json``. Only the
supervisor writes it during a heartbeat; the CLI may clear pending
records between heartbeats.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import LedgerError
from .models import LifecycleAction

logger = logging.getLogger("deacon.ledger")

MAX_ALERTS = 50


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PendingRecreate(BaseModel):
    """A session that was killed and still needs to be brought back."""

    identity: str
    action: LifecycleAction
    attempts: int = 0
    last_error: str = ""
    escalated: bool = False
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)


class LedgerData(BaseModel):
    pending_recreates: dict[str, PendingRecreate] = Field(default_factory=dict)
    delete_failures: dict[str, int] = Field(default_factory=dict)
    alerts: list[str] = Field(default_factory=list)


class LifecycleLedger:
    """Persistent recovery state for the lifecycle supervisor.

    Reads go to disk and every mutating method re-reads the file before
    changing it, so a daemon and a CLI invocation never overwrite each
    other's updates with a stale copy.

    Args:
        path: JSON file to load from and save to.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.data = self._load()

    def _load(self) -> LedgerData:
        if not self.path.exists():
            return LedgerData()
        try:
            return LedgerData.model_validate(json.loads(self.path.read_text()))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Failed to load ledger %s: %s; starting empty", self.path, exc)
            return LedgerData()

    def reload(self) -> LedgerData:
        """Re-read the file, dropping the in-memory copy."""
        self.data = self._load()
        return self.data

    def save(self) -> None:
        """Write the ledger atomically.

        Raises:
            LedgerError: If the file cannot be written.
        """
        tmp = self.path.with_suffix(".json.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self.data.model_dump(mode="json"), indent=2) + "\n")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise LedgerError(f"writing ledger {self.path}: {exc}") from exc

    # -- delete failures ---------------------------------------------------

    def record_delete_failure(self, message_id: str) -> int:
        """Count a failed claim of ``message_id``; returns the running total."""
        self.reload()
        count = self.data.delete_failures.get(message_id, 0) + 1
        self.data.delete_failures[message_id] = count
        self.save()
        return count

    def clear_delete_failures(self, message_id: str) -> None:
        self.reload()
        if self.data.delete_failures.pop(message_id, None) is not None:
            self.save()

    # -- pending recreations -----------------------------------------------

    def pending(self, include_escalated: bool = False) -> list[PendingRecreate]:
        return [
            p for p in self.reload().pending_recreates.values()
            if include_escalated or not p.escalated
        ]

    def get_pending(self, identity: str) -> Optional[PendingRecreate]:
        return self.reload().pending_recreates.get(identity)

    def mark_needs_recreate(self, identity: str, action: LifecycleAction, error: str) -> PendingRecreate:
        """Record (or update) a failed recreation and count the attempt."""
        self.reload()
        entry = self.data.pending_recreates.get(identity)
        if entry is None:
            entry = PendingRecreate(identity=identity, action=action)
            self.data.pending_recreates[identity] = entry
        entry.action = action
        entry.attempts += 1
        entry.last_error = error
        entry.updated_at = _now()
        self.save()
        return entry

    def escalate(self, identity: str) -> None:
        self.reload()
        entry = self.data.pending_recreates.get(identity)
        if entry is None:
            return
        entry.escalated = True
        entry.updated_at = _now()
        self.save()

    def resolve(self, identity: str) -> bool:
        """Drop the pending record for ``identity``; True if one existed."""
        self.reload()
        if self.data.pending_recreates.pop(identity, None) is None:
            return False
        self.save()
        return True

    def clear_pending(self) -> int:
        self.reload()
        count = len(self.data.pending_recreates)
        self.data.pending_recreates.clear()
        self.save()
        return count

    # -- alerts ------------------------------------------------------------

    def alert(self, text: str) -> None:
        self.reload()
        self.data.alerts.append(f"[{_now()}] {text}")
        if len(self.data.alerts) > MAX_ALERTS:
            self.data.alerts = self.data.alerts[-MAX_ALERTS:]
        self.save()
