"""Runtime settings resolved from the environment and an optional .env file."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DATA_DIR = ".silenttray"
DB_NAME = "silenttray.db"


@dataclass
class Settings:
    project_dir: Path
    log_level: str = "INFO"
    log_format: str = "console"
    busy_timeout: float = 5.0
    agent_id: str = "cli"

    @property
    def data_dir(self) -> Path:
        return self.project_dir / DATA_DIR

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_NAME


def _load_env() -> None:
    """Load the nearest .env file, walking up from CWD."""
    cwd = Path.cwd()
    for parent in [cwd, *cwd.parents]:
        env_file = parent / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


def load_settings(project_dir: str | Path | None = None) -> Settings:
    """Build Settings. An explicit project_dir wins over SILENTTRAY_PROJECT_DIR."""
    _load_env()
    if project_dir is None:
        project_dir = os.environ.get("SILENTTRAY_PROJECT_DIR", os.getcwd())

    timeout_raw = os.environ.get("SILENTTRAY_BUSY_TIMEOUT", "5.0")
    try:
        busy_timeout = float(timeout_raw)
    except ValueError:
        raise ValueError(
            f"SILENTTRAY_BUSY_TIMEOUT must be a number of seconds, got {timeout_raw!r}"
        )

    return Settings(
        project_dir=Path(project_dir).resolve(),
        log_level=os.environ.get("SILENTTRAY_LOG_LEVEL", "INFO"),
        log_format=os.environ.get("SILENTTRAY_LOG_FORMAT", "console"),
        busy_timeout=busy_timeout,
        agent_id=os.environ.get("SILENTTRAY_AGENT_ID", "cli"),
    )
