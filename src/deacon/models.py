"""
Pydantic models for the lifecycle supervisor.

Messages and status records arrive from external tools as JSON;
everything else is derived by the supervisor and never persisted
except through the recovery ledger.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LifecycleAction(str, Enum):
    """Transitions an agent may request for its own session."""

    RESTART = "restart"
    SHUTDOWN = "shutdown"
    CYCLE = "cycle"

    @property
    def flag(self) -> str:
        """State-file key the agent sets to acknowledge readiness."""
        return f"requesting_{self.value}"


class ControlMessage(BaseModel):
    """A message as listed by the mail transport.

    ``read`` is informational only; claiming is done by deletion.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    from_: str = Field(default="", alias="from")
    to: str = ""
    subject: str = ""
    body: str = ""
    timestamp: str = ""
    read: bool = False
    priority: str = ""
    type: str = ""


class LifecycleRequest(BaseModel):
    """A lifecycle request extracted from a control message."""

    sender: str
    action: LifecycleAction
    message_id: str = ""
    sent_at: Optional[datetime] = None


class ActionPhase(str, Enum):
    """States of the executor: received -> verified -> executing -> completed | failed."""

    RECEIVED = "received"
    VERIFIED = "verified"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """Result of handling one message (or one pending recreation)."""

    IGNORED = "ignored"
    STALE = "stale"
    UNRESOLVED = "unresolved"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"
    NEEDS_RECREATE = "needs_recreate"
    ESCALATED = "escalated"


class LifecycleOutcome(BaseModel):
    """What happened to a single lifecycle request.

    ``phases`` lists every executor state the request passed through;
    ``phase`` is the last of them.
    """

    message_id: str = ""
    sender: str = ""
    action: Optional[LifecycleAction] = None
    status: OutcomeStatus
    phase: ActionPhase = ActionPhase.RECEIVED
    phases: list[ActionPhase] = Field(default_factory=lambda: [ActionPhase.RECEIVED])
    detail: str = ""


class StatusRecord(BaseModel):
    """An agent's self-reported status, parsed from its tracker record.

    Only ``agent_state`` matters to the supervisor, and only for logs.
    """

    id: str
    issue_type: str = ""
    agent_state: str = ""
    hook_bead: str = ""
    role_bead: str = ""
    role_type: str = ""
    rig: str = ""
    updated_at: str = ""
