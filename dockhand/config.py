"""
Centralized configuration for Dockhand.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from dockhand.config import get_config
    cfg = get_config()
    print(cfg.db.name)                 # "dockhand"
    print(cfg.vault.request_timeout)   # 10.0
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_KUBE_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "dockhand"
    user: str = "dockhand"
    password: str = ""
    pool_min: int = 1
    pool_max: int = 5

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class VaultSyncConfig:
    """Secret-store sync tuning."""

    request_timeout: float = 10.0  # per HTTP call to Vault
    sync_timeout: float = 120.0  # per stack sync
    kube_token_path: Path = Path(DEFAULT_KUBE_TOKEN_PATH)
    default_path: str = "secret/data"
    sync_interval_minutes: int = 0  # 0 = scheduler disabled


@dataclass(frozen=True)
class Config:
    """Top-level Dockhand configuration."""

    workspace: Path = field(default_factory=lambda: Path.home() / "dockhand")
    git_repos_dir: Path = field(default_factory=lambda: Path.home() / "dockhand" / "git-repos")

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    vault: VaultSyncConfig = field(default_factory=VaultSyncConfig)

    api_port: int = 3000


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    workspace = Path(os.environ.get("DOCKHAND_WORKSPACE", Path.home() / "dockhand"))
    git_repos_dir = Path(os.environ.get("DOCKHAND_GIT_REPOS_DIR", workspace / "git-repos"))

    db = DatabaseConfig(
        host=os.environ.get("DOCKHAND_DB_HOST", ""),
        port=int(os.environ.get("DOCKHAND_DB_PORT", "5432")),
        name=os.environ.get("DOCKHAND_DB_NAME", "dockhand"),
        user=os.environ.get("DOCKHAND_DB_USER", os.environ.get("USER", "dockhand")),
        password=os.environ.get("DOCKHAND_DB_PASSWORD", ""),
        pool_min=int(os.environ.get("DOCKHAND_DB_POOL_MIN", "1")),
        pool_max=int(os.environ.get("DOCKHAND_DB_POOL_MAX", "5")),
    )

    vault = VaultSyncConfig(
        request_timeout=float(os.environ.get("DOCKHAND_VAULT_TIMEOUT", "10")),
        sync_timeout=float(os.environ.get("DOCKHAND_SYNC_TIMEOUT", "120")),
        kube_token_path=Path(
            os.environ.get("DOCKHAND_KUBE_TOKEN_PATH", DEFAULT_KUBE_TOKEN_PATH)
        ),
        default_path=os.environ.get("DOCKHAND_VAULT_DEFAULT_PATH", "secret/data"),
        sync_interval_minutes=int(os.environ.get("DOCKHAND_SYNC_INTERVAL", "0")),
    )

    return Config(
        workspace=workspace,
        git_repos_dir=git_repos_dir,
        db=db,
        vault=vault,
        api_port=int(os.environ.get("DOCKHAND_API_PORT", "3000")),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
