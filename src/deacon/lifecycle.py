"""
Lifecycle supervisor: restart, cycle, and shut down agent sessions on request.

One heartbeat pass:

    retry pending recreations
    list deacon inbox
    for each message, in order:
        parse        -> not a lifecycle request: ignore
        staleness    -> older than max age: delete, drop
        claim        -> delete the message BEFORE acting on it
        resolve      -> identity outside the grammar: drop
        verify       -> agent must have requesting_<action> == true
        execute      -> shutdown, or kill/settle/sync/create/configure/start
        clear flag   -> best-effort

Claim-then-execute means a message is acted on at most once: if the
action fails, the message is already gone and the agent must ask
again. A failed delete is logged and the action still runs, up to
``max_delete_failures`` times for the same message.

Errors from one message or pending recreation never stop the pass over
the rest, and recovery ledger writes are best-effort.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, TypeVar

from .agent_state import AgentStateStore
from .config import DeaconConfig
from .errors import (
    DeaconError,
    ExecutionError,
    LedgerError,
    MailboxError,
    PreconditionError,
    SessionHostError,
)
from .identity import Identity, Role, parse_identity
from .ledger import LifecycleLedger, PendingRecreate
from .mailbox import GtMailbox, Mailbox
from .messages import is_stale, message_age, parse_lifecycle_request
from .models import (
    ActionPhase,
    ControlMessage,
    LifecycleAction,
    LifecycleOutcome,
    LifecycleRequest,
    OutcomeStatus,
)
from .session_host import MAYOR_THEME, SessionHost, TmuxSessionHost, assign_theme
from .status_records import BeadsStatusReader, StatusReader
from .workspace import (
    BeadsTrackerSync,
    GitRepositorySync,
    WorkspaceSynchronizer,
)

logger = logging.getLogger("deacon.lifecycle")

T = TypeVar("T")

ROLE_ENV = "GT_ROLE"
ACTOR_ENV = "BD_ACTOR"

_ROLE_LABELS = {
    Role.MAYOR: "coordinator",
    Role.WITNESS: "witness",
    Role.REFINERY: "refinery",
    Role.CREW: "crew",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleSupervisor:
    """Consumes lifecycle requests and acts on agent sessions.

    Args:
        config: Supervisor settings (town root, timings, names).
        mailbox: Transport holding the deacon inbox.
        sessions: Session host adapter.
        state_store: Reader/writer for agent state files.
        status_reader: Optional external status lookup, used for logs only.
        workspace: Optional pre-restart synchronizer for working clones.
        ledger: Recovery ledger; defaults to ``config.ledger_file``.
        sleep: Called with the settle interval after a kill.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        config: DeaconConfig,
        mailbox: Mailbox,
        sessions: SessionHost,
        state_store: Optional[AgentStateStore] = None,
        status_reader: Optional[StatusReader] = None,
        workspace: Optional[WorkspaceSynchronizer] = None,
        ledger: Optional[LifecycleLedger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.mailbox = mailbox
        self.sessions = sessions
        self.state_store = state_store or AgentStateStore(config.town_root)
        self.status_reader = status_reader
        self.workspace = workspace
        self.ledger = ledger or LifecycleLedger(config.ledger_file)
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: DeaconConfig) -> "LifecycleSupervisor":
        """Wire the supervisor to gt mail, tmux, git, and bd."""
        timeout = config.command_timeout
        return cls(
            config=config,
            mailbox=GtMailbox(config.town_root, timeout=timeout),
            sessions=TmuxSessionHost(timeout=timeout),
            state_store=AgentStateStore(config.town_root),
            status_reader=BeadsStatusReader(config.town_root, timeout=timeout),
            workspace=WorkspaceSynchronizer(
                GitRepositorySync(timeout=timeout),
                BeadsTrackerSync(timeout=timeout),
                remote=config.upstream_remote,
                branch=config.main_branch,
            ),
        )

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.config.max_message_age_seconds)

    # ------------------------------------------------------------------
    # Heartbeat pass
    # ------------------------------------------------------------------

    def process_requests(self) -> list[LifecycleOutcome]:
        """Run one full pass over pending recreations and the inbox.

        Returns:
            list[LifecycleOutcome]: One entry per pending recreation retried
            and per inbox message, in processing order.
        """
        outcomes = self.retry_pending()

        try:
            messages = self.mailbox.inbox(self.config.inbox_identity)
        except MailboxError as exc:
            logger.warning("Inbox unavailable: %s", exc)
            return outcomes

        for msg in messages:
            try:
                outcome = self.handle_message(msg)
            except Exception as exc:
                logger.exception("Unexpected error handling message %s", msg.id)
                outcome = self._crashed(msg.from_, None, exc, message_id=msg.id)
            outcomes.append(outcome)
        return outcomes

    def handle_message(self, msg: ControlMessage) -> LifecycleOutcome:
        """Filter, gate, claim, and execute a single inbox message."""
        request = parse_lifecycle_request(msg)
        if request is None:
            logger.debug("Ignoring non-lifecycle message %s: %r", msg.id, msg.subject)
            return LifecycleOutcome(
                message_id=msg.id, sender=msg.from_, status=OutcomeStatus.IGNORED
            )

        now = self._clock()
        if is_stale(request.sent_at, self.max_age, now):
            age = message_age(request.sent_at, now)
            logger.warning(
                "Ignoring stale lifecycle request from %s (age: %s, max: %s) - deleting",
                request.sender, age, self.max_age,
            )
            try:
                self.mailbox.delete(msg.id)
            except MailboxError as exc:
                logger.warning("Failed to delete stale message %s: %s", msg.id, exc)
            return self._outcome(request, OutcomeStatus.STALE, detail=f"age {age}")

        logger.info("Processing lifecycle request from %s: %s", request.sender, request.action.value)

        if not self._claim(msg.id, request):
            return self._outcome(
                request,
                OutcomeStatus.ESCALATED,
                detail=f"message could not be deleted after {self.config.max_delete_failures} attempts",
            )

        return self.execute(request)

    def _claim(self, message_id: str, request: LifecycleRequest) -> bool:
        """Delete the message before execution.

        Returns:
            bool: False only when repeated delete failures have exhausted
            the retry budget for this message.
        """
        try:
            self.mailbox.delete(message_id)
        except MailboxError as exc:
            failures = self._update_ledger(
                "delete failure", self.ledger.record_delete_failure, message_id
            )
            if failures is None:
                logger.warning("Failed to delete message %s before execution: %s", message_id, exc)
                return True

            limit = self.config.max_delete_failures
            if failures > limit:
                if failures == limit + 1:
                    logger.error(
                        "Message %s from %s could not be deleted %d times; not executing %s",
                        message_id, request.sender, failures, request.action.value,
                    )
                    self._update_ledger(
                        "alert",
                        self.ledger.alert,
                        f"undeletable lifecycle message {message_id} from {request.sender} "
                        f"({request.action.value}): {exc}",
                    )
                else:
                    logger.warning(
                        "Message %s still undeletable (%d failures); skipping", message_id, failures
                    )
                return False
            logger.warning(
                "Failed to delete message %s before execution (%d/%d): %s",
                message_id, failures, limit, exc,
            )
            return True

        self._update_ledger("delete failure reset", self.ledger.clear_delete_failures, message_id)
        return True

    # ------------------------------------------------------------------
    # Action executor
    # ------------------------------------------------------------------

    def execute(self, request: LifecycleRequest) -> LifecycleOutcome:
        """Verify and perform a claimed lifecycle request.

        State machine: received -> verified -> executing -> completed | failed.
        """
        identity = parse_identity(request.sender)
        phases = [ActionPhase.RECEIVED]
        if not identity.resolved:
            logger.error("Error executing lifecycle action: unknown agent identity: %s", request.sender)
            phases.append(ActionPhase.FAILED)
            return self._outcome(
                request, OutcomeStatus.UNRESOLVED, phases, f"unknown agent identity: {request.sender}"
            )

        session = identity.session_name(self.config.session_prefix)
        logger.info("Executing %s for session %s", request.action.value, session)

        try:
            self.state_store.verify_requesting(identity, request.action)
        except PreconditionError as exc:
            logger.error("State verification failed for %s: %s", identity.raw, exc)
            phases.append(ActionPhase.FAILED)
            return self._outcome(request, OutcomeStatus.BLOCKED, phases, str(exc))
        phases.append(ActionPhase.VERIFIED)

        self._log_status_record(identity)

        phases.append(ActionPhase.EXECUTING)
        try:
            if request.action == LifecycleAction.SHUTDOWN:
                self._shutdown(session)
            elif request.action in (LifecycleAction.RESTART, LifecycleAction.CYCLE):
                self._restart(identity, session, request.action)
            else:
                raise ExecutionError(f"unknown action: {request.action}")
        except ExecutionError as exc:
            logger.error("Error executing lifecycle action for %s: %s", identity.raw, exc)
            phases.append(ActionPhase.FAILED)
            if exc.needs_recreate:
                status = self._record_recreate_failure(identity, request.action, exc)
                return self._outcome(request, status, phases, str(exc))
            return self._outcome(request, OutcomeStatus.FAILED, phases, str(exc))

        phases.append(ActionPhase.COMPLETED)
        return self._outcome(request, OutcomeStatus.COMPLETED, phases)

    def _shutdown(self, session: str) -> None:
        if self._session_exists(session):
            try:
                self.sessions.kill(session)
            except SessionHostError as exc:
                raise ExecutionError(f"killing session: {exc}") from exc
            logger.info("Killed session %s", session)

    def _restart(self, identity: Identity, session: str, action: LifecycleAction) -> None:
        """Kill (if running), settle, start fresh, then clear the request flag."""
        if self._session_exists(session):
            try:
                self.sessions.kill(session)
            except SessionHostError as exc:
                raise ExecutionError(f"killing session: {exc}") from exc
            logger.info("Killed session %s for restart", session)
            self._sleep(self.config.settle_seconds)

        self._start_session(identity, session)
        logger.info("Restarted session %s", session)

        if self._update_ledger("resolve", self.ledger.resolve, identity.raw):
            logger.info("Pending recreation for %s resolved", identity.raw)

        try:
            self.state_store.clear_requesting(identity, action)
        except DeaconError as exc:
            logger.warning("Failed to clear agent state for %s: %s", identity.raw, exc)

    def _start_session(self, identity: Identity, session: str) -> None:
        work_dir = identity.work_dir(self.config.town_root)

        if identity.needs_presync and self.workspace is not None:
            logger.info("Pre-syncing workspace for %s at %s", identity.raw, work_dir)
            self.workspace.sync(work_dir)

        try:
            self.sessions.create(session, work_dir)
        except SessionHostError as exc:
            raise ExecutionError(f"creating session: {exc}", needs_recreate=True) from exc

        for key, value in ((ROLE_ENV, identity.raw), (ACTOR_ENV, identity.actor_path())):
            try:
                self.sessions.set_environment(session, key, value)
            except SessionHostError as exc:
                logger.warning("Could not set %s on %s: %s", key, session, exc)

        self._apply_theme(identity, session)

        try:
            self.sessions.send(session, self.config.start_command)
        except SessionHostError as exc:
            raise ExecutionError(f"sending startup command: {exc}", needs_recreate=True) from exc

    def _apply_theme(self, identity: Identity, session: str) -> None:
        label = _ROLE_LABELS[identity.role]
        try:
            if identity.role == Role.MAYOR:
                self.sessions.apply_theme(session, MAYOR_THEME, "", "Mayor", label)
            else:
                # crew bars show the member name rather than the role
                worker = identity.member if identity.role == Role.CREW else label
                self.sessions.apply_theme(session, assign_theme(identity.rig), identity.rig, worker, label)
        except SessionHostError as exc:
            logger.warning("Could not theme %s: %s", session, exc)

    def _session_exists(self, session: str) -> bool:
        try:
            return self.sessions.exists(session)
        except SessionHostError as exc:
            raise ExecutionError(f"checking session: {exc}") from exc

    def _log_status_record(self, identity: Identity) -> None:
        if self.status_reader is None:
            return
        try:
            state = self.status_reader.agent_state(identity)
        except Exception as exc:
            logger.info("Status record lookup for %s failed: %s", identity.raw, exc)
            return
        if state:
            logger.info("Agent record %s reports state: %s", identity.status_record_id(), state)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def retry_pending(self) -> list[LifecycleOutcome]:
        """Retry sessions that were killed but never came back.

        A pending entry whose agent has since cleared its flag is dropped:
        the agent is managing itself again. An error on one entry never
        stops the rest of the heartbeat.
        """
        outcomes: list[LifecycleOutcome] = []
        for entry in self.ledger.pending():
            try:
                outcome = self._retry_entry(entry)
            except Exception as exc:
                logger.exception("Unexpected error retrying recreation of %s", entry.identity)
                outcome = self._crashed(entry.identity, entry.action, exc)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def _retry_entry(self, entry: PendingRecreate) -> Optional[LifecycleOutcome]:
        identity = parse_identity(entry.identity)
        if not identity.resolved:
            self._update_ledger("resolve", self.ledger.resolve, entry.identity)
            return None

        if not self.state_store.is_requesting(identity, entry.action):
            logger.info("Dropping pending recreation for %s: %s no longer set", identity.raw, entry.action.flag)
            self._update_ledger("resolve", self.ledger.resolve, entry.identity)
            return None

        session = identity.session_name(self.config.session_prefix)
        logger.info(
            "Retrying recreation of %s (attempt %d/%d)",
            session, entry.attempts + 1, self.config.max_recreate_attempts,
        )
        phases = [ActionPhase.RECEIVED, ActionPhase.VERIFIED, ActionPhase.EXECUTING]
        status = OutcomeStatus.COMPLETED
        detail = ""
        try:
            self._restart(identity, session, entry.action)
            phases.append(ActionPhase.COMPLETED)
        except ExecutionError as exc:
            logger.error("Recreation of %s failed: %s", session, exc)
            phases.append(ActionPhase.FAILED)
            detail = str(exc)
            if exc.needs_recreate:
                status = self._record_recreate_failure(identity, entry.action, exc)
            else:
                status = OutcomeStatus.FAILED
        return LifecycleOutcome(
            sender=identity.raw,
            action=entry.action,
            status=status,
            phase=phases[-1],
            phases=phases,
            detail=detail,
        )

    def _record_recreate_failure(
        self, identity: Identity, action: LifecycleAction, exc: ExecutionError
    ) -> OutcomeStatus:
        entry = self._update_ledger(
            "pending recreation", self.ledger.mark_needs_recreate, identity.raw, action, str(exc)
        )
        if entry is None:
            logger.warning("%s needs recreation but it could not be recorded: %s", identity.raw, exc)
            return OutcomeStatus.NEEDS_RECREATE
        if entry.attempts >= self.config.max_recreate_attempts:
            self._update_ledger("escalation", self.ledger.escalate, identity.raw)
            self._update_ledger(
                "alert",
                self.ledger.alert,
                f"{identity.raw} has no session after {entry.attempts} attempts: {exc}",
            )
            logger.error(
                "Giving up on %s after %d recreation attempts; operator action required",
                identity.raw, entry.attempts,
            )
            return OutcomeStatus.ESCALATED
        logger.warning("%s needs recreation (attempt %d): %s", identity.raw, entry.attempts, exc)
        return OutcomeStatus.NEEDS_RECREATE

    def _update_ledger(self, what: str, update: Callable[..., T], *args) -> Optional[T]:
        """Apply a ledger update; a failed write is logged and yields None."""
        try:
            return update(*args)
        except LedgerError as exc:
            logger.warning("Recovery ledger not updated (%s): %s", what, exc)
            return None

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    @staticmethod
    def _outcome(
        request: LifecycleRequest,
        status: OutcomeStatus,
        phases: Optional[list[ActionPhase]] = None,
        detail: str = "",
    ) -> LifecycleOutcome:
        phases = list(phases or [ActionPhase.RECEIVED])
        return LifecycleOutcome(
            message_id=request.message_id,
            sender=request.sender,
            action=request.action,
            status=status,
            phase=phases[-1],
            phases=phases,
            detail=detail,
        )

    @staticmethod
    def _crashed(
        sender: str,
        action: Optional[LifecycleAction],
        exc: Exception,
        message_id: str = "",
    ) -> LifecycleOutcome:
        return LifecycleOutcome(
            message_id=message_id,
            sender=sender,
            action=action,
            status=OutcomeStatus.FAILED,
            phase=ActionPhase.FAILED,
            phases=[ActionPhase.RECEIVED, ActionPhase.FAILED],
            detail=str(exc),
        )
