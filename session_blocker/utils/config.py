#!/usr/bin/env python3
from __future__ import annotations

import os
import json
import logging
import dataclasses
from typing import Optional

DEFAULT_STATE_DIR = os.path.join(os.path.expanduser("~"), ".session-blocker")
DEFAULT_CONFIG_FILE = os.path.join(DEFAULT_STATE_DIR, "config.json")


@dataclasses.dataclass
class BlockerConfig:
    app_name: str = "Session Blocker"
    hosts_path: str = "/etc/hosts"
    marker_start: str = "# SESSION-BLOCKER START"
    marker_end: str = "# SESSION-BLOCKER END"
    loopback_address: str = "127.0.0.1"

    # Both paths are named verbatim in the sudoers rule; keep them fixed and absolute.
    helper_path: str = "/usr/local/bin/session-blocker-helper"
    sudoers_path: str = "/etc/sudoers.d/session-blocker"

    state_dir: str = DEFAULT_STATE_DIR

    monitor_interval: float = 10.0
    elevation_timeout: float = 120.0
    command_timeout: float = 30.0
    kill_grace_period: float = 3.0

    @property
    def staging_dir(self) -> str:
        return os.path.join(self.state_dir, "staging")

    @property
    def pid_file(self) -> str:
        return os.path.join(self.state_dir, "session.pid")

    @property
    def log_file(self) -> str:
        return os.path.join(self.state_dir, "session_blocker.log")

    def ensure_state_dir(self) -> None:
        os.makedirs(self.state_dir, mode=0o700, exist_ok=True)
        os.makedirs(self.staging_dir, mode=0o700, exist_ok=True)


def load_config(path: Optional[str] = None, **overrides) -> BlockerConfig:
    """Build a config from defaults, an optional JSON file and keyword overrides.

    A missing default config file is fine; a missing explicit one is not.
    """
    values = {}
    config_path = path or DEFAULT_CONFIG_FILE
    if path or os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                values = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed config file {config_path}: {e}") from e
        if not isinstance(values, dict):
            raise ValueError(f"Config file {config_path} must contain a JSON object")
        logging.info(f"Loaded configuration from {config_path}")

    values.update({key: value for key, value in overrides.items() if value is not None})

    known = {field.name for field in dataclasses.fields(BlockerConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    config = BlockerConfig(**values)
    config.state_dir = os.path.expanduser(config.state_dir)
    if config.monitor_interval <= 0:
        raise ValueError("monitor_interval must be positive")
    return config
