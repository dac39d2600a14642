"""
Agent state files: the readiness gate.

Each agent owns a ``state.json`` and sets ``requesting_<action>: true``
(plus ``requesting_time``) once it has finished its pre-shutdown work.
The supervisor refuses to touch a session unless that flag is exactly
``true``, and removes both keys after a successful restart or cycle.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .errors import DeaconError, PreconditionError
from .identity import Identity
from .models import LifecycleAction

logger = logging.getLogger("deacon.agent_state")

REQUEST_TIME_KEY = "requesting_time"


class AgentStateStore:
    """Reads and clears readiness flags in agent state files.

    Args:
        town_root: Root under which every role directory lives.
    """

    def __init__(self, town_root: Path) -> None:
        self.town_root = Path(town_root)

    def path_for(self, identity: Identity) -> Path:
        return identity.require().state_path(self.town_root)

    def load(self, identity: Identity) -> dict[str, Any]:
        """Read an agent's state file.

        Raises:
            FileNotFoundError: If the agent has never written one.
            ValueError: If the file is not a JSON object.
        """
        path = self.path_for(identity)
        data = json.loads(path.read_text())
        if not isinstance(data, dict):
            raise ValueError(f"{path} does not contain a JSON object")
        return data

    def verify_requesting(self, identity: Identity, action: LifecycleAction) -> None:
        """Require ``requesting_<action>`` to be boolean true.

        Args:
            identity: Resolved agent identity.
            action: The action about to be performed.

        Raises:
            PreconditionError: If the file is missing or unparseable, or the
                flag is absent or anything other than ``true``.
        """
        key = action.flag
        path = self.path_for(identity)
        try:
            state = self.load(identity)
        except FileNotFoundError as exc:
            raise PreconditionError(
                f"agent state file not found: {path} "
                f"(agent must set {key}=true before lifecycle request)"
            ) from exc
        except (OSError, ValueError) as exc:
            raise PreconditionError(f"reading agent state {path}: {exc}") from exc

        if key not in state:
            raise PreconditionError(
                f"agent state missing {key} field (agent must set this before lifecycle request)"
            )
        value = state[key]
        if value is not True:
            raise PreconditionError(f"agent state {key} is not true (got: {value!r})")

        logger.info("Verified agent %s has %s=true", identity.raw, key)

    def is_requesting(self, identity: Identity, action: LifecycleAction) -> bool:
        try:
            self.verify_requesting(identity, action)
        except PreconditionError:
            return False
        return True

    def clear_requesting(self, identity: Identity, action: LifecycleAction) -> None:
        """Remove ``requesting_<action>`` and ``requesting_time``.

        All other keys are written back unchanged.

        Raises:
            DeaconError: If the file cannot be read or written.
        """
        path = self.path_for(identity)
        try:
            state = self.load(identity)
        except (OSError, ValueError) as exc:
            raise DeaconError(f"reading state file {path}: {exc}") from exc

        state.pop(action.flag, None)
        state.pop(REQUEST_TIME_KEY, None)

        try:
            path.write_text(json.dumps(state, indent=2) + "\n")
        except OSError as exc:
            raise DeaconError(f"writing state file {path}: {exc}") from exc

        logger.info("Cleared %s from agent %s state", action.flag, identity.raw)
