"""
Mailbox port and the ``gt mail`` adapter.

The supervisor only needs two things from the message transport:
list the messages addressed to an identity, and delete one by id.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from . import proc
from .errors import CommandError, MailboxError
from .models import ControlMessage

logger = logging.getLogger("deacon.mailbox")


class Mailbox:
    """Abstract message transport.

    Implementations raise MailboxError on failure. Deleting an id
    that is already gone may raise; callers treat that as non-fatal.
    """

    def inbox(self, identity: str) -> list[ControlMessage]:
        """List messages addressed to ``identity``, in inbox order."""
        raise NotImplementedError

    def delete(self, message_id: str) -> None:
        """Remove a message permanently."""
        raise NotImplementedError


class GtMailbox(Mailbox):
    """Mailbox backed by the ``gt mail`` command.

    Args:
        town_root: Working directory for every ``gt`` invocation.
        timeout: Optional per-command timeout in seconds.
        binary: Name or path of the gt executable.
    """

    def __init__(self, town_root: Path, timeout: Optional[float] = None, binary: str = "gt"):
        self.town_root = Path(town_root)
        self.timeout = timeout
        self.binary = binary

    def inbox(self, identity: str) -> list[ControlMessage]:
        try:
            output = proc.run(
                [self.binary, "mail", "inbox", "--identity", identity, "--json"],
                cwd=self.town_root,
                timeout=self.timeout,
            )
        except CommandError as exc:
            raise MailboxError(f"listing inbox for {identity}: {exc}") from exc

        if not output.strip():
            return []
        try:
            raw = json.loads(output)
        except json.JSONDecodeError as exc:
            raise MailboxError(f"parsing inbox JSON: {exc}") from exc
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise MailboxError(f"inbox JSON is not a list: {type(raw).__name__}")

        messages: list[ControlMessage] = []
        for item in raw:
            try:
                messages.append(ControlMessage.model_validate(item))
            except ValidationError as exc:
                logger.warning("Skipping malformed inbox entry: %s", exc)
        return messages

    def delete(self, message_id: str) -> None:
        try:
            proc.run(
                [self.binary, "mail", "delete", message_id],
                cwd=self.town_root,
                timeout=self.timeout,
            )
        except CommandError as exc:
            raise MailboxError(f"deleting message {message_id}: {exc}") from exc
        logger.info("Deleted lifecycle message: %s", message_id)
