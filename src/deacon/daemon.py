"""
Deacon daemon: the heartbeat that drives the lifecycle supervisor.

Runs as a background process, calling the supervisor once per
heartbeat, strictly one pass at a time, and exposing a local HTTP
API so the CLI can query what the last passes did.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from .config import DeaconConfig
from .lifecycle import LifecycleSupervisor
from .models import LifecycleOutcome, OutcomeStatus

logger = logging.getLogger("deacon.daemon")

MAX_ERRORS = 50


class DaemonState:
    """Thread-safe mutable daemon state.

    Stores the latest heartbeat results. All access is lock-protected.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_heartbeat: Optional[datetime] = None
        self.heartbeats: int = 0
        self.outcome_counts: dict[str, int] = {s.value: 0 for s in OutcomeStatus}
        self.errors: list[str] = []
        self.running: bool = False

    def snapshot(self) -> dict:
        """Return a serializable snapshot of current state.

        Returns:
            Dict with all state fields, safe for JSON serialization.
        """
        with self._lock:
            return {
                "running": self.running,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "uptime_seconds": (
                    (datetime.now(timezone.utc) - self.started_at).total_seconds()
                    if self.started_at
                    else 0
                ),
                "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
                "heartbeats": self.heartbeats,
                "outcomes": dict(self.outcome_counts),
                "recent_errors": self.errors[-10:],
                "pid": os.getpid(),
            }

    def record_heartbeat(self, outcomes: list[LifecycleOutcome]) -> None:
        """Record the outcomes of one supervisor pass."""
        with self._lock:
            self.last_heartbeat = datetime.now(timezone.utc)
            self.heartbeats += 1
            for outcome in outcomes:
                self.outcome_counts[outcome.status.value] = (
                    self.outcome_counts.get(outcome.status.value, 0) + 1
                )
        for outcome in outcomes:
            if outcome.status in (OutcomeStatus.FAILED, OutcomeStatus.ESCALATED):
                self.record_error(f"{outcome.sender} {outcome.status.value}: {outcome.detail}")

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > MAX_ERRORS:
                self.errors = self.errors[-MAX_ERRORS:]


class DaemonService:
    """The deacon heartbeat process.

    Args:
        config: Deacon configuration.
        supervisor: Supervisor to drive; built from config when omitted.
    """

    def __init__(self, config: DeaconConfig, supervisor: Optional[LifecycleSupervisor] = None):
        self.config = config
        self.state = DaemonState()
        self.supervisor = supervisor
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._server: Optional[HTTPServer] = None

    def start(self) -> None:
        """Start the heartbeat and API threads.

        Writes a PID file and sets up logging and signal handlers first.
        """
        self._write_pid()
        self._setup_logging()
        self._setup_signals()

        self.state.running = True
        self.state.started_at = datetime.now(timezone.utc)

        logger.info(
            "Daemon starting: town=%s port=%d heartbeat=%ds",
            self.config.town_root,
            self.config.api_port,
            self.config.heartbeat_interval,
        )

        if self.supervisor is None:
            self.supervisor = LifecycleSupervisor.from_config(self.config)

        t = threading.Thread(target=self._heartbeat_loop, name="deacon-heartbeat", daemon=True)
        t.start()
        self._threads.append(t)

        self._start_api_server()

        logger.info("Daemon started, PID %d", os.getpid())

    def stop(self) -> None:
        """Gracefully stop the daemon and all workers."""
        logger.info("Daemon stopping...")
        self._stop_event.set()
        self.state.running = False

        if self._server:
            self._server.shutdown()

        for t in self._threads:
            t.join(timeout=5)

        self._remove_pid()
        logger.info("Daemon stopped.")

    def run_forever(self) -> None:
        """Block until stop is signaled."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def heartbeat(self) -> list[LifecycleOutcome]:
        """Run one supervisor pass and record it."""
        try:
            outcomes = self.supervisor.process_requests()
        except Exception as exc:
            logger.error("Heartbeat error: %s", exc)
            self.state.record_error(f"Heartbeat: {exc}")
            return []
        self.state.record_heartbeat(outcomes)
        acted = [o for o in outcomes if o.status != OutcomeStatus.IGNORED]
        if acted:
            logger.info("Heartbeat handled %d lifecycle request(s)", len(acted))
        return outcomes

    def _heartbeat_loop(self) -> None:
        while not self._stop_event.is_set():
            self.heartbeat()
            self._stop_event.wait(timeout=self.config.heartbeat_interval)

    def _start_api_server(self) -> None:
        """Start the local HTTP API server in a background thread."""
        state = self.state

        class DaemonHandler(BaseHTTPRequestHandler):
            """HTTP handler for the daemon status API."""

            def do_GET(self):
                if self.path == "/status":
                    self._json_response(state.snapshot())
                elif self.path == "/ping":
                    self._json_response({"pong": True, "pid": os.getpid()})
                else:
                    self._json_response({"endpoints": ["/status", "/ping"]})

            def _json_response(self, data: dict, status: int = 200):
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.end_headers()
                self.wfile.write(json.dumps(data, indent=2, default=str).encode())

            def log_message(self, format, *args):
                logger.debug("API: %s", format % args)

        try:
            self._server = HTTPServer(("127.0.0.1", self.config.api_port), DaemonHandler)
            t = threading.Thread(
                target=self._server.serve_forever,
                name="deacon-api",
                daemon=True,
            )
            t.start()
            self._threads.append(t)
            logger.info("API server listening on http://127.0.0.1:%d", self._server.server_port)
        except OSError as exc:
            logger.error("Failed to start API server: %s", exc)
            self.state.record_error(f"API server: {exc}")

    def _setup_logging(self) -> None:
        """Configure file logging."""
        self.config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.config.log_file)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
        )
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    def _setup_signals(self) -> None:
        """Register signal handlers for graceful shutdown."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self._stop_event.set()

    def _write_pid(self) -> None:
        pid_path = self.config.pid_file
        pid_path.parent.mkdir(parents=True, exist_ok=True)
        pid_path.write_text(str(os.getpid()), encoding="utf-8")

    def _remove_pid(self) -> None:
        self.config.pid_file.unlink(missing_ok=True)


def read_pid(config: DeaconConfig) -> Optional[int]:
    """Read the daemon PID from the PID file.

    Args:
        config: Deacon configuration (locates the PID file).

    Returns:
        PID as int, or None if not running. A stale PID file is removed.
    """
    pid_path = config.pid_file
    if not pid_path.exists():
        return None
    try:
        pid = int(pid_path.read_text(encoding="utf-8").strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        pid_path.unlink(missing_ok=True)
        return None


def is_running(config: DeaconConfig) -> bool:
    return read_pid(config) is not None


def get_daemon_status(port: int) -> Optional[dict]:
    """Query the running daemon's status via HTTP API.

    Returns:
        Status dict from the daemon, or None if unreachable.
    """
    import urllib.error
    import urllib.request

    try:
        url = f"http://127.0.0.1:{port}/status"
        with urllib.request.urlopen(url, timeout=3) as resp:
            return json.loads(resp.read())
    except (urllib.error.URLError, OSError, json.JSONDecodeError):
        return None
