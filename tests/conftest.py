"""Shared test fixtures for deacon.

In-memory fakes stand in for gt mail, tmux, git, and bd. Every fake
appends to one shared ``events`` list so tests can check ordering.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

from deacon.config import DeaconConfig
from deacon.errors import CommandError, MailboxError, SessionHostError, StatusRecordError
from deacon.identity import parse_identity
from deacon.lifecycle import LifecycleSupervisor
from deacon.mailbox import Mailbox
from deacon.models import ControlMessage, StatusRecord
from deacon.session_host import SessionHost
from deacon.status_records import StatusReader
from deacon.workspace import RepositorySync, TrackerSync, WorkspaceSynchronizer

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class FakeMailbox(Mailbox):
    def __init__(self, events: list, messages: Optional[list[ControlMessage]] = None):
        self.events = events
        self.messages = list(messages or [])
        self.deleted: list[str] = []
        self.fail_delete = False
        self.fail_inbox = False

    def inbox(self, identity: str) -> list[ControlMessage]:
        if self.fail_inbox:
            raise MailboxError("gt not available")
        return list(self.messages)

    def delete(self, message_id: str) -> None:
        self.events.append(("delete", message_id))
        if self.fail_delete:
            raise MailboxError(f"cannot delete {message_id}")
        self.deleted.append(message_id)
        self.messages = [m for m in self.messages if m.id != message_id]


class FakeSessionHost(SessionHost):
    def __init__(self, events: list):
        self.events = events
        self.sessions: dict[str, Path] = {}
        self.env: dict[str, dict[str, str]] = {}
        self.themes: dict[str, tuple] = {}
        self.sent: list[tuple[str, str]] = []
        self.fail: set[str] = set()

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise SessionHostError(f"{op} failed")

    def exists(self, name: str) -> bool:
        self._check("exists")
        return name in self.sessions

    def kill(self, name: str) -> None:
        self.events.append(("kill", name))
        self._check("kill")
        self.sessions.pop(name, None)

    def create(self, name: str, directory: Path) -> None:
        self.events.append(("create", name))
        self._check("create")
        self.sessions[name] = directory

    def set_environment(self, name: str, key: str, value: str) -> None:
        self._check("env")
        self.env.setdefault(name, {})[key] = value

    def apply_theme(self, name, theme, rig="", worker="", role="") -> None:
        self._check("theme")
        self.themes[name] = (theme, rig, worker, role)

    def send(self, name: str, line: str) -> None:
        self.events.append(("send", name))
        self._check("send")
        self.sent.append((name, line))


class FakeRepoSync(RepositorySync):
    def __init__(self, events: list, fail: bool = False):
        self.events = events
        self.fail = fail

    def fetch(self, work_dir: Path, remote: str) -> None:
        self.events.append(("fetch", str(work_dir)))
        if self.fail:
            raise CommandError(["git", "fetch", remote], 128, "fatal: unable to access")

    def pull_rebase(self, work_dir: Path, remote: str, branch: str) -> None:
        self.events.append(("pull", str(work_dir)))
        if self.fail:
            raise CommandError(["git", "pull", "--rebase", remote, branch], 1, "CONFLICT")


class FakeTrackerSync(TrackerSync):
    def __init__(self, events: list):
        self.events = events

    def sync(self, work_dir: Path) -> None:
        self.events.append(("tracker", str(work_dir)))


class FakeStatusReader(StatusReader):
    def __init__(self, records: Optional[dict[str, StatusRecord]] = None):
        self.records = records or {}
        self.lookups: list[str] = []

    def fetch(self, record_id: str) -> StatusRecord:
        self.lookups.append(record_id)
        if record_id not in self.records:
            raise StatusRecordError(f"no record {record_id}")
        return self.records[record_id]


def make_message(
    sender: str = "wyvern-witness",
    body: str = '{"action": "shutdown"}',
    subject: str = "LIFECYCLE: shutdown requested",
    msg_id: str = "msg-1",
    timestamp: Optional[str] = None,
) -> ControlMessage:
    return ControlMessage.model_validate(
        {
            "id": msg_id,
            "from": sender,
            "to": "deacon/",
            "subject": subject,
            "body": body,
            "timestamp": timestamp if timestamp is not None else NOW.isoformat(),
        }
    )


@pytest.fixture
def town_root(tmp_path: Path) -> Path:
    """Provide a temporary town root."""
    root = tmp_path / "gt"
    root.mkdir()
    return root


@pytest.fixture
def config(town_root: Path) -> DeaconConfig:
    return DeaconConfig(town_root=town_root)


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def mailbox(events) -> FakeMailbox:
    return FakeMailbox(events)


@pytest.fixture
def sessions(events) -> FakeSessionHost:
    return FakeSessionHost(events)


@pytest.fixture
def status_reader() -> FakeStatusReader:
    return FakeStatusReader()


@pytest.fixture
def sleeps(events):
    """Record settle sleeps as events instead of sleeping."""
    recorded: list[float] = []

    def _sleep(seconds: float) -> None:
        recorded.append(seconds)
        events.append(("sleep", seconds))

    _sleep.recorded = recorded
    return _sleep


@pytest.fixture
def supervisor(config, mailbox, sessions, status_reader, events, sleeps) -> LifecycleSupervisor:
    workspace = WorkspaceSynchronizer(FakeRepoSync(events), FakeTrackerSync(events))
    return LifecycleSupervisor(
        config=config,
        mailbox=mailbox,
        sessions=sessions,
        status_reader=status_reader,
        workspace=workspace,
        sleep=sleeps,
        clock=lambda: NOW,
    )


@pytest.fixture
def write_state(town_root: Path):
    """Write an agent's state.json and return its path."""

    def _write(identity: str, state) -> Path:
        path = parse_identity(identity).state_path(town_root)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = state if isinstance(state, str) else json.dumps(state)
        path.write_text(text)
        return path

    return _write
