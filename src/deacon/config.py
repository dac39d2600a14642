"""
Deacon configuration.

Loaded from ``<town-root>/deacon/config.yaml`` when present, otherwise
defaults. Every component receives the config explicitly.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from . import TOWN_ROOT

logger = logging.getLogger("deacon.config")

CONFIG_FILE = "config.yaml"
DEACON_DIR = "deacon"


class DeaconConfig(BaseModel):
    """Settings for the lifecycle supervisor and its heartbeat daemon."""

    town_root: Path = Field(default_factory=lambda: Path(TOWN_ROOT))
    inbox_identity: str = "deacon/"
    max_message_age_seconds: float = 6 * 60 * 60
    settle_seconds: float = 0.5
    session_prefix: str = "gt-"
    start_command: str = "exec claude --dangerously-skip-permissions"
    upstream_remote: str = "origin"
    main_branch: str = "main"
    # None keeps external calls unbounded
    command_timeout: Optional[float] = None
    max_delete_failures: int = Field(default=3, ge=0)
    max_recreate_attempts: int = Field(default=3, ge=1)
    heartbeat_interval: int = Field(default=60, ge=1)
    api_port: int = 7778

    @field_validator("town_root", mode="after")
    @classmethod
    def _expand_root(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def deacon_dir(self) -> Path:
        """Directory holding the supervisor's own files."""
        return self.town_root / DEACON_DIR

    @property
    def log_file(self) -> Path:
        return self.deacon_dir / "logs" / "deacon.log"

    @property
    def pid_file(self) -> Path:
        return self.deacon_dir / "deacon.pid"

    @property
    def ledger_file(self) -> Path:
        return self.deacon_dir / "lifecycle.json"


def load_config(town_root: Optional[Path] = None, **overrides) -> DeaconConfig:
    """Load configuration for a town.

    Args:
        town_root: Town root directory. Defaults to DEACON_TOWN_ROOT or ~/gt.
        **overrides: Field values that take precedence over the file.

    Returns:
        DeaconConfig loaded from config.yaml, or defaults.
    """
    root = Path(town_root or TOWN_ROOT).expanduser()
    data: dict = {}
    config_file = root / DEACON_DIR / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text()) or {}
            if not isinstance(data, dict):
                raise ValueError(f"expected a mapping, got {type(data).__name__}")
        except (OSError, yaml.YAMLError, ValueError) as exc:
            logger.warning("Failed to load config: %s; using defaults", exc)
            data = {}

    data.update({k: v for k, v in overrides.items() if v is not None})
    data["town_root"] = root
    try:
        return DeaconConfig(**data)
    except ValueError as exc:
        logger.warning("Invalid config values: %s; using defaults", exc)
        return DeaconConfig(town_root=root, **{k: v for k, v in overrides.items() if v is not None})
