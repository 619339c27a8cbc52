"""
Vault secrets sync — pull a stack's declared secrets from Vault into its env vars.

Per stack:
  resolve environment -> read manifest -> load global Vault config
  -> merge overrides + decrypt credentials -> authenticate
  -> load stored values -> fetch per path group -> diff -> persist

Every failure becomes a SyncResult with success=False; nothing escapes
sync_stack(), and sync_all() isolates each stack from the others. Callers
redeploy a stack when should_redeploy(result) is true.

Usage:
    from dockhand.vault.sync import sync_stack_secrets
    result = sync_stack_secrets("web", "/srv/git-repos/12/web")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from dockhand.vault.client import VaultClient, authenticate, client_for
from dockhand.vault.errors import ManifestError, PersistenceError, SecretNotFoundError, SecretsError
from dockhand.vault.manifest import DEFAULT_VAULT_PATH, find_manifest_file, normalize_manifest, parse_manifest
from dockhand.vault.models import EffectiveConfig, SecretManifest, SyncResult
from dockhand.vault.resolver import decrypt_credentials, resolve_effective_config
from dockhand.vault.store import (
    Cipher,
    GitStackCatalog,
    MasterKeyCipher,
    PostgresGitStacks,
    PostgresSecretEnvStore,
    PostgresStackSources,
    PostgresVaultConfigStore,
    SecretEnvStore,
    StackSources,
    VaultConfigStore,
)

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Vault is not configured or disabled. Configure Vault in Settings first."


def should_redeploy(result: SyncResult) -> bool:
    """A stack redeploys iff at least one changed secret is flagged triggerRedeploy."""
    return bool(result.trigger_redeploy_secrets)


class SecretSync:
    """Runs the sync pipeline against a set of storage ports."""

    def __init__(
        self,
        config_store: VaultConfigStore,
        env_store: SecretEnvStore,
        cipher: Cipher,
        *,
        sources: StackSources | None = None,
        stacks: GitStackCatalog | None = None,
        client_factory: Callable[[EffectiveConfig], VaultClient] = client_for,
        default_path: str = DEFAULT_VAULT_PATH,
        sync_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config_store = config_store
        self.env_store = env_store
        self.cipher = cipher
        self.sources = sources
        self.stacks = stacks
        self.client_factory = client_factory
        self.default_path = default_path
        self.sync_timeout = sync_timeout
        self._clock = clock

    # ─── One stack ───────────────────────────────────────────────────

    def sync_stack(
        self,
        stack_name: str,
        stack_dir: Path | str,
        environment_id: int | None = None,
    ) -> SyncResult:
        """Sync one stack's secrets. Never raises."""
        try:
            return self._sync_stack(stack_name, Path(stack_dir), environment_id)
        except Exception as e:
            logger.exception("Unexpected error syncing secrets for stack %s", stack_name)
            return SyncResult.failure(f"Unexpected error: {e}")

    def _resolve_environment_id(self, stack_name: str, environment_id: int | None) -> int | None:
        if environment_id is not None or self.sources is None:
            return environment_id
        try:
            resolved = self.sources.environment_id(stack_name)
        except Exception as e:
            logger.warning("Could not resolve environment ID for stack %s: %s", stack_name, e)
            return None
        if resolved is not None:
            logger.info("Resolved environment ID %s for stack %s", resolved, stack_name)
        return resolved

    def _load_manifest(self, stack_dir: Path) -> SecretManifest | None:
        path = find_manifest_file(stack_dir)
        if path is None:
            return None
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestError(f"Cannot read {path.name}: {e}") from e
        return parse_manifest(content)

    def _sync_stack(
        self, stack_name: str, stack_dir: Path, environment_id: int | None
    ) -> SyncResult:
        env_id = self._resolve_environment_id(stack_name, environment_id)

        try:
            manifest = self._load_manifest(stack_dir)
        except ManifestError as e:
            logger.error("Failed to parse secrets file for stack %s: %s", stack_name, e)
            return SyncResult.failure(f"Failed to parse secrets file: {e}")
        if manifest is None:
            return SyncResult(success=True, skipped=True)

        global_config = self.config_store.get()
        if global_config is None or not global_config.enabled:
            return SyncResult.failure(NOT_CONFIGURED)

        parsed = normalize_manifest(manifest, global_config.default_path or self.default_path)
        deadline = self._clock() + self.sync_timeout if self.sync_timeout else None

        try:
            effective = decrypt_credentials(
                resolve_effective_config(global_config, parsed), self.cipher.decrypt
            )
            client = self.client_factory(effective)
            session = authenticate(client, effective)
        except SecretsError as e:
            return SyncResult.failure(f"Failed to connect to Vault: {e}")

        try:
            existing = self.env_store.get_secret_values(stack_name, env_id)
        except Exception as e:
            # Without prior values every fetched secret counts as changed, so a
            # flagged secret still triggers its redeploy.
            logger.warning(
                "Could not load existing secrets for %s, treating all as changed: %s",
                stack_name,
                e,
            )
            existing = {}

        errors: list[str] = []
        fetched: dict[str, str] = {}
        triggers: dict[str, bool] = {}

        for path, mappings in parsed.secrets_by_path.items():
            if deadline is not None and self._clock() > deadline:
                errors.append(
                    f'Secret sync timed out after {self.sync_timeout:g}s before reading "{path}"'
                )
                break
            try:
                found = client.get_secrets(session, path, [m.vault_key for m in mappings])
            except SecretsError as e:
                errors.append(f'Failed to read secrets from "{path}": {e}')
                continue

            values = {s.key: s.value for s in found}
            for mapping in mappings:
                if mapping.vault_key in values:
                    fetched[mapping.env_var] = values[mapping.vault_key]
                    triggers[mapping.env_var] = mapping.trigger_redeploy
                else:
                    errors.append(str(SecretNotFoundError(mapping.vault_key, path)))

        changed = [name for name, value in fetched.items() if existing.get(name) != value]
        trigger_redeploy = [name for name in changed if triggers.get(name)]

        if changed:
            logger.info(
                "Detected %d changed secrets for stack %s: %s",
                len(changed),
                stack_name,
                ", ".join(changed),
            )
            if trigger_redeploy:
                logger.info("Secrets that will trigger redeploy: %s", ", ".join(trigger_redeploy))

        if fetched:
            try:
                self.env_store.upsert_secrets(stack_name, env_id, fetched)
            except PersistenceError as e:
                return SyncResult(
                    success=False,
                    errors=[f"Failed to save secrets to database: {e}"],
                    secrets_changed=bool(changed),
                    trigger_redeploy_secrets=trigger_redeploy,
                    environment_id=env_id,
                )
            logger.info(
                "Synced %d secrets for stack %s (env: %s)",
                len(fetched),
                stack_name,
                env_id if env_id is not None else "none",
            )

        return SyncResult(
            success=not errors,
            synced=len(fetched),
            errors=errors,
            secrets_changed=bool(changed),
            trigger_redeploy_secrets=trigger_redeploy,
            environment_id=env_id,
        )

    # ─── Fleet ───────────────────────────────────────────────────────

    def sync_all(self) -> dict[str, SyncResult]:
        """Sync every Git-backed stack. One stack's failure never stops the others."""
        if self.stacks is None:
            raise ValueError("sync_all() needs a GitStackCatalog")

        results: dict[str, SyncResult] = {}
        for stack in self.stacks.list_git_stacks():
            try:
                stack_dir = self.stacks.stack_directory(stack)
                if stack_dir is None:
                    results[stack.stack_name] = SyncResult.failure("Stack directory not found")
                    continue
                results[stack.stack_name] = self.sync_stack(
                    stack.stack_name, stack_dir, stack.environment_id
                )
            except Exception as e:
                logger.warning("Secret sync failed for stack %s: %s", stack.stack_name, e)
                results[stack.stack_name] = SyncResult.failure(str(e))
        return results


# ─── Default wiring ──────────────────────────────────────────────────


def default_sync() -> SecretSync:
    """SecretSync backed by PostgreSQL and the workspace master key."""
    from dockhand.config import get_config

    cfg = get_config()
    cipher = MasterKeyCipher(workspace=cfg.workspace)

    def factory(effective: EffectiveConfig) -> VaultClient:
        return client_for(
            effective,
            timeout=cfg.vault.request_timeout,
            kube_token_path=cfg.vault.kube_token_path,
        )

    return SecretSync(
        PostgresVaultConfigStore(),
        PostgresSecretEnvStore(cipher),
        cipher,
        sources=PostgresStackSources(),
        stacks=PostgresGitStacks(cfg.git_repos_dir),
        client_factory=factory,
        default_path=cfg.vault.default_path,
        sync_timeout=cfg.vault.sync_timeout,
    )


def sync_stack_secrets(
    stack_name: str, stack_dir: Path | str, environment_id: int | None = None
) -> SyncResult:
    return default_sync().sync_stack(stack_name, stack_dir, environment_id)


def sync_all_stack_secrets() -> dict[str, SyncResult]:
    return default_sync().sync_all()
