"""Configuration management for boqsync."""

import os
from pathlib import Path

import tomli
from pydantic import BaseModel, Field, field_validator

DEFAULT_API_URL = "http://localhost:5000/api"


class BoqSyncConfig(BaseModel):
    """Main configuration for boqsync."""

    # Remote approval service
    api_base_url: str = Field(default=DEFAULT_API_URL)
    request_timeout: float = Field(default=15.0)  # seconds

    # Paths
    data_dir: Path = Field(default=Path("~/.local/share/boqsync"))
    log_dir: Path = Field(default=Path("~/.local/share/boqsync/logs"))
    # Written by the external login flow; its presence means we are authenticated
    credential_file: Path = Field(default=Path("~/.local/share/boqsync/authToken"))

    # Flush gate
    flush_min_interval: float = Field(default=5.0, ge=0)  # cooldown between passes
    flush_max_attempts: int = Field(default=10, ge=0)  # per process lifetime
    flush_check_interval: float = Field(default=30.0, gt=0)  # watch-mode poll

    @field_validator("data_dir", "log_dir", "credential_file", mode="before")
    @classmethod
    def expand_paths(cls, v: Path | str) -> Path:
        """Expand user home directory in paths."""
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser().resolve()

    @field_validator("api_base_url", mode="after")
    @classmethod
    def api_url_from_env(cls, v: str) -> str:
        """Allow the API location to be overridden from the environment."""
        env_url = os.getenv("BOQSYNC_API_URL")
        if env_url and v == DEFAULT_API_URL:
            v = env_url
        if not v.startswith(("http://", "https://")):
            msg = f"api_base_url must be an http(s) URL, got {v!r}"
            raise ValueError(msg)
        return v.rstrip("/")

    @property
    def queue_db_path(self) -> Path:
        """SQLite database holding the queued submissions."""
        return self.data_dir / "queue.db"

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.data_dir, self.log_dir, self.credential_file.parent]:
            dir_path.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Path | None = None) -> BoqSyncConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        # Check common config locations (user config first)
        possible_paths = [
            Path.home() / ".config" / "boqsync" / "config.toml",  # User config
            Path.cwd() / "boqsync.toml",  # Current directory
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            config_data = tomli.load(f)
        return BoqSyncConfig(**config_data)
    # Use defaults
    return BoqSyncConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# boqsync Configuration
# =====================

# ============================================================================
# REQUIRED SETTINGS
# ============================================================================

# Approval service (the BoQ application's API gateway)
api_base_url = "http://localhost:5000/api"        # May also be set with BOQSYNC_API_URL

# ============================================================================
# COMMONLY CUSTOMIZED SETTINGS
# ============================================================================

data_dir = "~/.local/share/boqsync"               # Auto-created: queue database
log_dir = "~/.local/share/boqsync/logs"           # Auto-created: log files
credential_file = "~/.local/share/boqsync/authToken"  # Written by your login flow

# ============================================================================
# ADVANCED SETTINGS - Most users can leave these as defaults
# ============================================================================

request_timeout = 15                              # Seconds before a request counts as failed

# Queue flushing. Retries stop for the rest of the process lifetime once
# flush_max_attempts passes have run; restart boqsync to start counting again.
flush_min_interval = 5                            # Minimum seconds between flush passes
flush_max_attempts = 10                           # Flush passes allowed per process
flush_check_interval = 30                         # How often 'boqsync watch' re-checks the queue
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
