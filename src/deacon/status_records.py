"""
External status records, used for observability only.

Agents publish their own run state in a tracker record whose
description is a ``key: value`` list. The supervisor reads it for
the log and never lets it decide anything.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from . import proc
from .errors import CommandError, StatusRecordError
from .identity import Identity
from .models import StatusRecord

logger = logging.getLogger("deacon.status_records")

AGENT_ISSUE_TYPE = "agent"
RUNNING_STATES = ("running", "working")

_DESCRIPTION_KEYS = ("agent_state", "hook_bead", "role_bead", "role_type", "rig")


def parse_description(description: str) -> dict[str, str]:
    """Pull recognised ``key: value`` fields out of a record description.

    Blank lines, lines without a colon, and empty or ``null`` values
    are skipped. Keys match case-insensitively.
    """
    fields: dict[str, str] = {}
    for line in description.splitlines():
        line = line.strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()
        if not value or value == "null":
            continue
        if key in _DESCRIPTION_KEYS:
            fields[key] = value
    return fields


class StatusReader:
    """Abstract lookup of status records by id."""

    def fetch(self, record_id: str) -> StatusRecord:
        """Return the record, or raise StatusRecordError."""
        raise NotImplementedError

    def agent_state(self, identity: Identity) -> Optional[str]:
        """Best-effort state token for an identity; None when unavailable."""
        record_id = identity.status_record_id()
        if not record_id:
            return None
        try:
            return self.fetch(record_id).agent_state or None
        except StatusRecordError as exc:
            logger.info("No status record for %s: %s", identity.raw, exc)
            return None

    def is_agent_running(self, identity: Identity) -> tuple[bool, bool]:
        """Check whether an agent reports itself as running.

        Returns:
            (running, found): ``found`` is False when no record could be read.
        """
        record_id = identity.status_record_id()
        if not record_id:
            return False, False
        try:
            record = self.fetch(record_id)
        except StatusRecordError:
            return False, False
        return record.agent_state in RUNNING_STATES, True


class BeadsStatusReader(StatusReader):
    """Reads agent records with ``bd show <id> --json``.

    Args:
        town_root: Working directory for bd.
        timeout: Optional per-command timeout in seconds.
    """

    def __init__(self, town_root: Path, timeout: Optional[float] = None, binary: str = "bd"):
        self.town_root = Path(town_root)
        self.timeout = timeout
        self.binary = binary

    def fetch(self, record_id: str) -> StatusRecord:
        try:
            output = proc.run(
                [self.binary, "show", record_id, "--json"],
                cwd=self.town_root,
                timeout=self.timeout,
            )
        except CommandError as exc:
            raise StatusRecordError(f"bd show {record_id}: {exc}") from exc

        try:
            records = json.loads(output)
        except json.JSONDecodeError as exc:
            raise StatusRecordError(f"parsing bd show output: {exc}") from exc

        # bd show --json returns a one-element array
        if not isinstance(records, list) or not records or not isinstance(records[0], dict):
            raise StatusRecordError(f"agent record not found: {record_id}")

        raw = records[0]
        issue_type = raw.get("issue_type", "")
        if issue_type != AGENT_ISSUE_TYPE:
            raise StatusRecordError(
                f"record {record_id} is not an agent record (type={issue_type})"
            )

        try:
            return StatusRecord(
                id=str(raw.get("id") or record_id),
                issue_type=issue_type,
                updated_at=str(raw.get("updated_at") or ""),
                **parse_description(str(raw.get("description") or "")),
            )
        except ValidationError as exc:
            raise StatusRecordError(f"invalid agent record {record_id}: {exc}") from exc
