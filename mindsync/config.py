"""Configuration management for the MindSync engine."""

import os
import shutil
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from dotenv import load_dotenv


@dataclass
class Config:
    """Configuration class for MindSync with validation and defaults."""

    # Storage
    data_dir: Path = field(default_factory=lambda: Path.home() / ".mindsync")

    # Git identity used for every commit made by the engine
    bot_name: str = "mindsync-bot"
    bot_email: str = "bot@mindsync.local"

    # Remote access
    github_token: Optional[str] = None
    default_branch: str = "main"

    # Git execution
    git_timeout: float = 30.0
    git_network_timeout: float = 120.0
    git_retry_attempts: int = 2
    git_retry_delay: float = 1.0
    fetch_on_status: bool = True

    # Document behaviour
    history_limit: int = 50
    lock_timeout: float = 60.0

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        self.data_dir = self.data_dir.expanduser()

        self.log_level = self.log_level.upper()
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")

        if not self.bot_name or not self.bot_name.strip():
            raise ValueError("bot_name must not be empty")
        if not self.bot_email or "@" not in self.bot_email:
            raise ValueError(f"Invalid bot_email: {self.bot_email!r}")

        if not self.default_branch or not self.default_branch.strip():
            raise ValueError("default_branch must not be empty")

        if self.git_timeout <= 0 or self.git_network_timeout <= 0:
            raise ValueError("git timeouts must be positive")

        if self.git_retry_attempts < 1:
            raise ValueError("git_retry_attempts must be at least 1")

        if self.git_retry_delay < 0:
            raise ValueError("git_retry_delay must be non-negative")

        if self.history_limit <= 0:
            raise ValueError("history_limit must be positive")

        if self.lock_timeout <= 0:
            raise ValueError("lock_timeout must be positive")

        # An empty token in the environment means "no token"
        if self.github_token is not None and not self.github_token.strip():
            self.github_token = None

    @property
    def repos_dir(self) -> Path:
        """Root of all per-branch git working directories."""
        return self.data_dir / "git"

    @property
    def documents_dir(self) -> Path:
        """Directory where mindmap documents and cards are stored."""
        return self.data_dir / "documents"

    @property
    def lock_dir(self) -> Path:
        """Directory for lock files."""
        return self.data_dir / "locks"

    @property
    def temp_dir(self) -> Path:
        """Directory for export staging areas."""
        return self.data_dir / "temp"


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes", "on")


def load_configuration() -> Config:
    """Load configuration from a .env file and MINDSYNC_* environment variables."""
    load_dotenv()
    defaults = Config.__dataclass_fields__

    try:
        return Config(
            data_dir=Path(os.getenv("MINDSYNC_DATA_DIR", str(Path.home() / ".mindsync"))),
            bot_name=os.getenv("MINDSYNC_GIT_BOT_NAME", defaults["bot_name"].default),
            bot_email=os.getenv("MINDSYNC_GIT_BOT_EMAIL", defaults["bot_email"].default),
            github_token=os.getenv("MINDSYNC_GITHUB_TOKEN"),
            default_branch=os.getenv("MINDSYNC_DEFAULT_BRANCH", "main"),
            git_timeout=float(os.getenv("MINDSYNC_GIT_TIMEOUT", "30")),
            git_network_timeout=float(os.getenv("MINDSYNC_GIT_NETWORK_TIMEOUT", "120")),
            git_retry_attempts=int(os.getenv("MINDSYNC_GIT_RETRY_ATTEMPTS", "2")),
            git_retry_delay=float(os.getenv("MINDSYNC_GIT_RETRY_DELAY", "1.0")),
            fetch_on_status=_env_bool("MINDSYNC_FETCH_ON_STATUS", True),
            history_limit=int(os.getenv("MINDSYNC_HISTORY_LIMIT", "50")),
            lock_timeout=float(os.getenv("MINDSYNC_LOCK_TIMEOUT", "60")),
            log_level=os.getenv("MINDSYNC_LOG_LEVEL", "INFO").upper(),
        )
    except (ValueError, TypeError) as e:
        raise ValueError(f"Configuration error: {e}")


def validate_configuration(config: Config) -> List[str]:
    """Validate the runtime environment and return any errors or warnings."""
    errors = []

    for directory in (config.repos_dir, config.documents_dir, config.lock_dir, config.temp_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
            test_file = directory / ".test_write"
            test_file.write_text("test")
            test_file.unlink()
        except PermissionError:
            errors.append(f"ERROR: No write permission for directory: {directory}")
        except OSError as e:
            errors.append(f"ERROR: Cannot access directory {directory}: {e}")

    if shutil.which("git") is None:
        errors.append("ERROR: git executable not found on PATH")

    if not config.github_token:
        errors.append("WARNING: MINDSYNC_GITHUB_TOKEN is not set; pushing to HTTPS remotes will fail")

    if config.history_limit < 10:
        errors.append(f"WARNING: history_limit of {config.history_limit} keeps very little undo history")

    if errors:
        logging.getLogger('mindsync.config').debug(f"Configuration validation produced {len(errors)} issue(s)")

    return errors
