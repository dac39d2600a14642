"""Exception hierarchy for the deacon supervisor."""

from __future__ import annotations

from typing import Optional


class DeaconError(Exception):
    """Base class for every error raised by deacon."""


class CommandError(DeaconError):
    """An external command exited non-zero, timed out, or was not found.

    Attributes:
        cmd: The command and its arguments.
        returncode: Exit status, or None if the command never ran.
        output: Combined stdout/stderr captured from the command.
    """

    def __init__(self, cmd: list[str], returncode: Optional[int] = None, output: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output.strip()
        detail = f"exit {returncode}" if returncode is not None else "did not run"
        message = f"{' '.join(self.cmd)}: {detail}"
        if self.output:
            message += f" (output: {self.output})"
        super().__init__(message)


class MailboxError(DeaconError):
    """The message transport could not list or delete messages."""


class SessionHostError(DeaconError):
    """The session host rejected an operation."""


class StatusRecordError(DeaconError):
    """An external status record could not be fetched or parsed."""


class LedgerError(DeaconError):
    """The recovery ledger could not be written."""


class UnresolvedIdentityError(DeaconError):
    """An identity string is outside the supported grammar."""


class PreconditionError(DeaconError):
    """The agent has not marked itself ready for the requested action."""


class ExecutionError(DeaconError):
    """A lifecycle action failed part-way through.

    Attributes:
        needs_recreate: True when the old session was already killed
            and no replacement is running.
    """

    def __init__(self, message: str, needs_recreate: bool = False):
        super().__init__(message)
        self.needs_recreate = needs_recreate
