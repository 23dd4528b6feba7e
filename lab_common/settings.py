"""
Configuration for the lab toolkit.

Every setting can come from a LAB_* environment variable; explicit values
(usually CLI options) override the environment, which overrides defaults.

Environment Variables:
    LAB_PROJECT_DIR: Directory holding the compose file and agent context (default: cwd)
    LAB_COMPOSE_FILE: Compose file name inside the project dir (default: docker-compose.yml)
    LAB_COMPOSE_PROJECT: Compose project name (default: jenkins-lab)
    LAB_MASTER_URL: Jenkins master URL (default: http://localhost:8080)
    LAB_AGENT_HOST: Agent SSH host (default: localhost)
    LAB_AGENT_PORT: Agent SSH port published on the host (default: 2222)
    LAB_AGENT_USER: Build user on the agent (default: jenkins)
    LAB_SSH_TIMEOUT: Seconds for one SSH probe (default: 10.0)
    LAB_HTTP_TIMEOUT: Seconds to wait for the master to answer (default: 120.0)
    LAB_DB_PATH: Smoke-run history database (default: ~/.jenkins-lab/history.db)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_COMPOSE_FILE = "docker-compose.yml"
DEFAULT_COMPOSE_PROJECT = "jenkins-lab"
DEFAULT_MASTER_URL = "http://localhost:8080"
DEFAULT_AGENT_HOST = "localhost"
DEFAULT_AGENT_PORT = 2222
DEFAULT_AGENT_USER = "jenkins"
DEFAULT_SSH_TIMEOUT = 10.0
DEFAULT_HTTP_TIMEOUT = 120.0

KEY_NAME = "jenkins_agent_key"
AGENT_CONTEXT_DIR = "agent"
KEYS_DIR = "keys"


def get_db_path() -> str:
    """Get the history database path from environment variable or default."""
    return os.environ.get(
        "LAB_DB_PATH", str(Path.home() / ".jenkins-lab" / "history.db")
    )


def _positive_float(name: str, value: float | None, default: float) -> float:
    """
    Resolve a positive float from an explicit value or the environment.

    Invalid values are logged and replaced with the default.
    """
    if value is not None:
        if value <= 0:
            logger.warning(f"Invalid {name}={value}, using default {default}")
            return default
        return value

    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw}, using default {default}")
        return default
    if parsed <= 0:
        logger.warning(f"Invalid {name}={parsed}, using default {default}")
        return default
    return parsed


def _port(name: str, value: int | None, default: int) -> int:
    if value is not None:
        return value
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        port = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw}, using default {default}")
        return default
    if not 0 < port < 65536:
        logger.warning(f"Invalid {name}={port}, using default {default}")
        return default
    return port


@dataclass
class LabSettings:
    """Resolved configuration for one CLI invocation."""

    project_dir: Path
    compose_file: str = DEFAULT_COMPOSE_FILE
    compose_project: str = DEFAULT_COMPOSE_PROJECT
    master_url: str = DEFAULT_MASTER_URL
    agent_host: str = DEFAULT_AGENT_HOST
    agent_port: int = DEFAULT_AGENT_PORT
    agent_user: str = DEFAULT_AGENT_USER
    ssh_timeout: float = DEFAULT_SSH_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    db_path: str = ""

    @classmethod
    def from_env(
        cls,
        project_dir: str | Path | None = None,
        compose_file: str | None = None,
        compose_project: str | None = None,
        master_url: str | None = None,
        agent_host: str | None = None,
        agent_port: int | None = None,
        agent_user: str | None = None,
        ssh_timeout: float | None = None,
        http_timeout: float | None = None,
        db_path: str | None = None,
    ) -> "LabSettings":
        """
        Build settings from explicit values, falling back to LAB_* variables.

        Args:
            Each argument overrides the matching environment variable when
            not None.

        Returns:
            Fully resolved settings
        """
        env = os.environ
        return cls(
            project_dir=Path(
                project_dir or env.get("LAB_PROJECT_DIR") or Path.cwd()
            )
            .expanduser()
            .resolve(),
            compose_file=compose_file
            or env.get("LAB_COMPOSE_FILE", DEFAULT_COMPOSE_FILE),
            compose_project=compose_project
            or env.get("LAB_COMPOSE_PROJECT", DEFAULT_COMPOSE_PROJECT),
            master_url=(
                master_url or env.get("LAB_MASTER_URL", DEFAULT_MASTER_URL)
            ).rstrip("/"),
            agent_host=agent_host or env.get("LAB_AGENT_HOST", DEFAULT_AGENT_HOST),
            agent_port=_port("LAB_AGENT_PORT", agent_port, DEFAULT_AGENT_PORT),
            agent_user=agent_user or env.get("LAB_AGENT_USER", DEFAULT_AGENT_USER),
            ssh_timeout=_positive_float(
                "LAB_SSH_TIMEOUT", ssh_timeout, DEFAULT_SSH_TIMEOUT
            ),
            http_timeout=_positive_float(
                "LAB_HTTP_TIMEOUT", http_timeout, DEFAULT_HTTP_TIMEOUT
            ),
            db_path=db_path or get_db_path(),
        )

    @property
    def compose_path(self) -> Path:
        return self.project_dir / self.compose_file

    @property
    def agent_context(self) -> Path:
        return self.project_dir / AGENT_CONTEXT_DIR

    @property
    def private_key_path(self) -> Path:
        return self.project_dir / KEYS_DIR / KEY_NAME

    @property
    def public_key_path(self) -> Path:
        return self.project_dir / KEYS_DIR / f"{KEY_NAME}.pub"

    @property
    def env_file(self) -> Path:
        return self.project_dir / ".env"
