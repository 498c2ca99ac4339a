"""
Configuration management for flowsync stores.

The configuration is stored as a TOML file in the store directory.
It names the storage backend, the sync tuning knobs, the signed-in
identity (if any) and the backup repository coordinates.

The backup token is never written to the file; it comes from the
environment (FLOWSYNC_GITHUB_TOKEN or GITHUB_TOKEN).
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w

from .types import Identity


CONFIG_FILENAME = "flowsync.toml"
CONFIG_VERSION = 1

DEFAULT_DEBOUNCE_DELAY = 0.8  # seconds
DEFAULT_BATCH_LIMIT = 500     # hosted store limit per write batch
DEFAULT_BACKUP_REPO = "flow-planner-backup"

TOKEN_ENV_VARS = ("FLOWSYNC_GITHUB_TOKEN", "GITHUB_TOKEN")


@dataclass
class BackupConfig:
    """Coordinates of the external backup repository."""
    owner: str = ""
    repo: str = DEFAULT_BACKUP_REPO

    @property
    def configured(self) -> bool:
        return bool(self.owner and self.repo)


@dataclass
class SyncConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = "local"

    debounce_delay: float = DEFAULT_DEBOUNCE_DELAY
    batch_limit: int = DEFAULT_BATCH_LIMIT

    identity_id: Optional[str] = None
    backup: BackupConfig = field(default_factory=BackupConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def identity(self) -> Optional[Identity]:
        """Configured identity, or None when no session is configured."""
        if not self.identity_id:
            return None
        return Identity(self.identity_id)

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory: FLOWSYNC_STORE_PATH or ~/.flowsync."""
    env_path = os.environ.get("FLOWSYNC_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".flowsync"


def get_backup_token() -> Optional[str]:
    """Backup repository token from the environment, if set."""
    for name in TOKEN_ENV_VARS:
        token = os.environ.get(name)
        if token:
            return token
    return None


def load_config(store_path: Path) -> SyncConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    sync = data.get("sync", {})
    debounce_delay = float(sync.get("debounce_delay", DEFAULT_DEBOUNCE_DELAY))
    batch_limit = int(sync.get("batch_limit", DEFAULT_BATCH_LIMIT))
    if debounce_delay < 0:
        raise ValueError(f"sync.debounce_delay must be >= 0, got {debounce_delay}")
    if batch_limit < 1:
        raise ValueError(f"sync.batch_limit must be >= 1, got {batch_limit}")

    backup = data.get("backup", {})

    return SyncConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", "local"),
        debounce_delay=debounce_delay,
        batch_limit=batch_limit,
        identity_id=data.get("identity", {}).get("id") or None,
        backup=BackupConfig(
            owner=backup.get("owner", ""),
            repo=backup.get("repo", DEFAULT_BACKUP_REPO),
        ),
    )


def save_config(config: SyncConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "sync": {
            "debounce_delay": config.debounce_delay,
            "batch_limit": config.batch_limit,
        },
        "backup": {
            "owner": config.backup.owner,
            "repo": config.backup.repo,
        },
    }
    if config.identity_id:
        data["identity"] = {"id": config.identity_id}

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> SyncConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = SyncConfig(path=store_path)
    save_config(config)
    return config
