"""
Agent identity grammar.

An identity string is parsed once into an ``Identity`` variant, and
every address the supervisor needs is projected from that variant:

    identity            session              state file                    status record        actor
    mayor               gt-mayor             mayor/state.json              gt-mayor             mayor
    <rig>-witness       gt-<rig>-witness     <rig>/witness/state.json      gt-witness-<rig>     <rig>/witness
    <rig>-refinery      gt-<rig>-refinery    <rig>/refinery/state.json     gt-refinery-<rig>    <rig>/refinery
    <rig>-crew-<m>      gt-<rig>-crew-<m>    <rig>/crew/<m>/state.json     gt-crew-<rig>-<m>    <rig>/crew/<m>

Shapes are tried in that order, so ``a-crew-b-witness`` is a witness
for rig ``a-crew-b``. Anything else is ``Role.UNRESOLVED``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import UnresolvedIdentityError

STATE_FILE = "state.json"
RECORD_PREFIX = "gt-"

_WITNESS_SUFFIX = "-witness"
_REFINERY_SUFFIX = "-refinery"
_CREW_SEP = "-crew-"


class Role(str, Enum):
    """Agent roles the supervisor knows how to manage."""

    MAYOR = "mayor"
    WITNESS = "witness"
    REFINERY = "refinery"
    CREW = "crew"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class Identity:
    """A parsed agent identity.

    Attributes:
        raw: The identity string as received.
        role: Which shape of the grammar matched.
        rig: Rig name (empty for the mayor).
        member: Crew member name (crew only).
    """

    raw: str
    role: Role
    rig: str = ""
    member: str = ""

    @property
    def resolved(self) -> bool:
        return self.role != Role.UNRESOLVED

    @property
    def needs_presync(self) -> bool:
        """Roles that keep a persistent working clone."""
        return self.role in (Role.REFINERY, Role.CREW)

    def require(self) -> "Identity":
        """Return self, or raise if the identity did not resolve.

        Raises:
            UnresolvedIdentityError: For identities outside the grammar.
        """
        if not self.resolved:
            raise UnresolvedIdentityError(f"unknown agent identity: {self.raw!r}")
        return self

    def to_string(self) -> str:
        """Rebuild the identity string from its components."""
        if self.role == Role.MAYOR:
            return "mayor"
        if self.role == Role.WITNESS:
            return f"{self.rig}{_WITNESS_SUFFIX}"
        if self.role == Role.REFINERY:
            return f"{self.rig}{_REFINERY_SUFFIX}"
        if self.role == Role.CREW:
            return f"{self.rig}{_CREW_SEP}{self.member}"
        return self.raw

    def session_name(self, prefix: str = "gt-") -> Optional[str]:
        """Session host name for this agent, or None if unresolved."""
        if not self.resolved:
            return None
        return f"{prefix}{self.to_string()}"

    def state_path(self, town_root: Path) -> Optional[Path]:
        """Path of the agent-owned state file, or None if unresolved."""
        role_dir = self._role_dir(town_root)
        return role_dir / STATE_FILE if role_dir is not None else None

    def status_record_id(self) -> Optional[str]:
        """Id of the external status record, or None if unresolved."""
        if self.role == Role.MAYOR:
            return f"{RECORD_PREFIX}mayor"
        if self.role in (Role.WITNESS, Role.REFINERY):
            return f"{RECORD_PREFIX}{self.role.value}-{self.rig}"
        if self.role == Role.CREW:
            return f"{RECORD_PREFIX}crew-{self.rig}-{self.member}"
        return None

    def actor_path(self) -> Optional[str]:
        """Slash-separated actor path, e.g. ``wyvern/crew/nux``."""
        if self.role == Role.MAYOR:
            return "mayor"
        if self.role in (Role.WITNESS, Role.REFINERY):
            return f"{self.rig}/{self.role.value}"
        if self.role == Role.CREW:
            return f"{self.rig}/crew/{self.member}"
        return None

    def work_dir(self, town_root: Path) -> Optional[Path]:
        """Directory the agent's session starts in."""
        if self.role == Role.MAYOR:
            return town_root
        if self.role == Role.WITNESS:
            return town_root / self.rig
        if self.role == Role.REFINERY:
            return town_root / self.rig / "refinery" / "rig"
        if self.role == Role.CREW:
            return town_root / self.rig / "crew" / self.member
        return None

    def _role_dir(self, town_root: Path) -> Optional[Path]:
        if self.role == Role.MAYOR:
            return town_root / "mayor"
        if self.role in (Role.WITNESS, Role.REFINERY):
            return town_root / self.rig / self.role.value
        if self.role == Role.CREW:
            return town_root / self.rig / "crew" / self.member
        return None


def parse_identity(raw: str) -> Identity:
    """Parse an identity string into its variant.

    Args:
        raw: Identity as written in a message's ``from`` field.

    Returns:
        Identity: The parsed variant; ``Role.UNRESOLVED`` when no shape matches
        or a rig/member component is empty.
    """
    if raw == "mayor":
        return Identity(raw=raw, role=Role.MAYOR)

    if raw.endswith(_WITNESS_SUFFIX):
        rig = raw[: -len(_WITNESS_SUFFIX)]
        if rig:
            return Identity(raw=raw, role=Role.WITNESS, rig=rig)
        return Identity(raw=raw, role=Role.UNRESOLVED)

    if raw.endswith(_REFINERY_SUFFIX):
        rig = raw[: -len(_REFINERY_SUFFIX)]
        if rig:
            return Identity(raw=raw, role=Role.REFINERY, rig=rig)
        return Identity(raw=raw, role=Role.UNRESOLVED)

    if _CREW_SEP in raw:
        rig, member = raw.split(_CREW_SEP, 1)
        if rig and member:
            return Identity(raw=raw, role=Role.CREW, rig=rig, member=member)

    return Identity(raw=raw, role=Role.UNRESOLVED)
