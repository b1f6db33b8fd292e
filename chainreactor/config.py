"""
ChainReactor Configuration

Centralized configuration for discovery, execution and logging.
All paths are derived from the project root unless set explicitly.
"""

import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

import pytz

from chainreactor.logging_setup import parse_level


TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ChainReactorConfig:
    """
    Configuration for the pipeline runner.

    All paths are relative to `root` unless specified as absolute.
    """

    # Base paths
    root: Path

    # Persisted order / enabled / command overrides / profiles
    state_file: Path

    # Logging
    logs_dir: Path
    event_logs_dir: Path

    # Discovery
    script_name: str = "all_build.sh"

    # Execution
    timeout_seconds: float = 300
    continue_on_failure: bool = False
    shell: str = "/bin/bash"

    # Misc
    timezone: str = "UTC"
    log_level: str = "INFO"
    output_history_lines: int = 5000

    def __post_init__(self):
        if self.timeout_seconds is None or self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds!r}")
        if not self.script_name or not self.script_name.strip():
            raise ValueError("script_name must not be blank")
        try:
            pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {self.timezone}")
        parse_level(self.log_level)

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    @classmethod
    def from_environment(cls, root: Optional[Path] = None) -> 'ChainReactorConfig':
        """
        Create ChainReactorConfig from environment variables and defaults.

        Args:
            root: Optional project root. If None, uses CHAINREACTOR_ROOT or the current directory.

        Returns:
            ChainReactorConfig instance

        Raises:
            ValueError: If a numeric, timezone or log level setting is invalid
        """
        if root is None:
            root = Path(os.getenv("CHAINREACTOR_ROOT", os.getcwd()))
        root = Path(root).expanduser().resolve()

        data_dir = root / ".chainreactor"
        state_file = Path(os.getenv("CHAINREACTOR_STATE_FILE", str(data_dir / "state.json")))
        logs_dir = data_dir / "logs"

        timeout_raw = os.getenv("CHAINREACTOR_TIMEOUT", "300")
        try:
            timeout_seconds = float(timeout_raw)
        except ValueError:
            raise ValueError(f"CHAINREACTOR_TIMEOUT must be a number, got {timeout_raw!r}")

        return cls(
            root=root,
            state_file=state_file,
            logs_dir=logs_dir,
            event_logs_dir=logs_dir / "events",
            script_name=os.getenv("CHAINREACTOR_SCRIPT_NAME", "all_build.sh"),
            timeout_seconds=timeout_seconds,
            continue_on_failure=os.getenv("CHAINREACTOR_CONTINUE_ON_FAILURE", "false").strip().lower() in TRUE_VALUES,
            shell=os.getenv("CHAINREACTOR_SHELL", "/bin/bash"),
            timezone=os.getenv("CHAINREACTOR_TIMEZONE", "UTC"),
            log_level=os.getenv("CHAINREACTOR_LOG_LEVEL", "INFO"),
        )
