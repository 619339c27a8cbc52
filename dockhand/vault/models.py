"""
Data models for the Vault secrets sync pipeline.

Plain dataclasses, frozen where the value must not change once built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any


class AuthMethod(StrEnum):
    TOKEN = "token"
    APPROLE = "approle"
    KUBERNETES = "kubernetes"


@dataclass(frozen=True)
class VaultConfig:
    """The global Vault settings row. ``token`` and ``secret_id`` hold ciphertext."""

    address: str
    auth_method: AuthMethod
    namespace: str | None = None
    default_path: str | None = None
    token: str | None = None
    role_id: str | None = None
    secret_id: str | None = None
    kube_role: str | None = None
    skip_tls_verify: bool = False
    enabled: bool = True


# ─── Manifest ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthOverride:
    """``vault.auth`` block of a manifest. Credentials here are plaintext."""

    method: AuthMethod
    token: str | None = None
    role_id: str | None = None
    secret_id: str | None = None
    kube_role: str | None = None


@dataclass(frozen=True)
class VaultBlock:
    address: str | None = None
    namespace: str | None = None
    path: str | None = None
    auth: AuthOverride | None = None
    trigger_redeploy: bool = False


@dataclass(frozen=True)
class SecretDefinition:
    """One entry of ``secrets``.

    ``trigger_redeploy`` is None when the manifest leaves it unset, so the
    manifest-level default applies.
    """

    name: str
    key: str
    path: str | None = None
    trigger_redeploy: bool | None = None


@dataclass(frozen=True)
class SecretManifest:
    secrets: tuple[SecretDefinition, ...]
    vault: VaultBlock | None = None


@dataclass(frozen=True)
class SecretMapping:
    env_var: str
    vault_key: str
    trigger_redeploy: bool


@dataclass(frozen=True)
class ParsedManifest:
    """Normalized manifest: secrets grouped by resolved KV v2 path, in manifest order."""

    vault_path: str
    secrets_by_path: dict[str, list[SecretMapping]]
    trigger_redeploy_default: bool = False
    vault_address: str | None = None
    vault_namespace: str | None = None
    auth_override: AuthOverride | None = None


# ─── Client ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EffectiveConfig:
    """Global settings merged with manifest overrides for one sync pass.

    ``encrypted_fields`` names the credential fields that still hold ciphertext
    from the global row; resolver.decrypt_credentials() clears it.
    """

    address: str
    auth_method: AuthMethod
    namespace: str | None = None
    default_path: str | None = None
    token: str | None = None
    role_id: str | None = None
    secret_id: str | None = None
    kube_role: str | None = None
    skip_tls_verify: bool = False
    encrypted_fields: frozenset[str] = frozenset()


@dataclass(frozen=True)
class AuthenticatedSession:
    """Token issued by Vault plus the routing options every read needs."""

    token: str
    namespace: str | None = None
    skip_tls_verify: bool = False

    def __repr__(self) -> str:
        return f"AuthenticatedSession(namespace={self.namespace!r}, skip_tls_verify={self.skip_tls_verify})"


@dataclass(frozen=True)
class VaultSecret:
    key: str
    value: str


@dataclass(frozen=True)
class ConnectionResult:
    success: bool
    version: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.version is not None:
            d["version"] = self.version
        if self.error is not None:
            d["error"] = self.error
        return d


# ─── Sync ────────────────────────────────────────────────────────────


@dataclass
class SyncResult:
    success: bool
    synced: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False
    secrets_changed: bool = False
    trigger_redeploy_secrets: list[str] = field(default_factory=list)
    # Scope the values were written under; may come from stack_sources.
    environment_id: int | None = None

    @classmethod
    def failure(cls, message: str) -> SyncResult:
        return cls(success=False, errors=[message])

    def as_dict(self) -> dict[str, Any]:
        """Wire form used by the API and CLI."""
        return {
            "success": self.success,
            "synced": self.synced,
            "errors": list(self.errors),
            "skipped": self.skipped,
            "secretsChanged": self.secrets_changed,
            "triggerRedeploySecrets": list(self.trigger_redeploy_secrets),
        }


@dataclass(frozen=True)
class GitStack:
    id: int
    stack_name: str
    repo_path: Path
    compose_path: str = "docker-compose.yml"
    environment_id: int | None = None
