"""
Persistence ports used by the secrets sync, plus their PostgreSQL adapters.

The sync pipeline only talks to the narrow interfaces below, so tests can
swap in in-memory fakes. The Postgres adapters use psycopg2 through
``dockhand.db.get_connection`` (one transaction per call); pass ``connect``
to substitute another connection context manager.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import psycopg2

from dockhand.crypto import decrypt_value, encrypt_value, get_master_key
from dockhand.vault.errors import PersistenceError
from dockhand.vault.models import AuthMethod, GitStack, VaultConfig

logger = logging.getLogger(__name__)

Connect = Callable[[], AbstractContextManager[Any]]


def _default_connect() -> AbstractContextManager[Any]:
    from dockhand.db.connection import get_connection

    return get_connection()


# ─── Ports ───────────────────────────────────────────────────────────


class Cipher(ABC):
    """Symmetric encryption for values at rest."""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str: ...

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str: ...


class VaultConfigStore(ABC):
    """The single global Vault settings row."""

    @abstractmethod
    def get(self) -> VaultConfig | None: ...

    @abstractmethod
    def save(self, config: VaultConfig) -> None: ...

    @abstractmethod
    def delete(self) -> None: ...


class SecretEnvStore(ABC):
    """Secret env vars scoped by (stack name, environment id)."""

    @abstractmethod
    def get_secret_values(self, stack_name: str, environment_id: int | None) -> dict[str, str]:
        """Return decrypted {ENV_VAR: value} for the stack's secret env vars."""

    @abstractmethod
    def upsert_secrets(
        self, stack_name: str, environment_id: int | None, values: dict[str, str]
    ) -> None:
        """Write all values in one batch. Raises PersistenceError; nothing is kept on failure."""


class StackSources(ABC):
    """Where a stack's definition lives."""

    @abstractmethod
    def environment_id(self, stack_name: str) -> int | None: ...

    @abstractmethod
    def git_stack_id(self, stack_name: str, environment_id: int | None) -> int | None: ...


class GitStackCatalog(ABC):
    """Git-backed stacks and their checked-out working directories."""

    def __init__(self, repos_dir: Path | str | None = None) -> None:
        self.repos_dir = Path(repos_dir) if repos_dir is not None else None

    @abstractmethod
    def list_git_stacks(self) -> list[GitStack]: ...

    @abstractmethod
    def get(self, stack_id: int) -> GitStack | None: ...

    def stack_directory(self, stack: GitStack) -> Path | None:
        """Directory holding the stack's compose file, or None if not checked out."""
        repo = stack.repo_path
        if not repo.is_absolute() and self.repos_dir is not None:
            repo = self.repos_dir / repo
        stack_dir = repo / Path(stack.compose_path).parent
        return stack_dir if stack_dir.is_dir() else None


# ─── Adapters ────────────────────────────────────────────────────────


class MasterKeyCipher(Cipher):
    """AES-256-GCM with the workspace master key."""

    def __init__(self, master_key: bytes | None = None, workspace: Path | str | None = None) -> None:
        self._key = master_key
        self._workspace = workspace

    def _master_key(self) -> bytes:
        if self._key is None:
            self._key = get_master_key(self._workspace)
        return self._key

    def encrypt(self, plaintext: str) -> str:
        return encrypt_value(plaintext, self._master_key())

    def decrypt(self, ciphertext: str) -> str:
        return decrypt_value(ciphertext, self._master_key())


class PostgresVaultConfigStore(VaultConfigStore):
    def __init__(self, connect: Connect = _default_connect) -> None:
        self._connect = connect

    def get(self) -> VaultConfig | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT address, namespace, default_path, auth_method, token, role_id,
                           secret_id, kube_role, skip_tls_verify, enabled
                    FROM vault_config ORDER BY id LIMIT 1
                    """
                )
                row = cur.fetchone()
        if not row:
            return None
        return VaultConfig(
            address=row[0],
            namespace=row[1],
            default_path=row[2],
            auth_method=AuthMethod(row[3]),
            token=row[4],
            role_id=row[5],
            secret_id=row[6],
            kube_role=row[7],
            skip_tls_verify=bool(row[8]),
            enabled=bool(row[9]),
        )

    def save(self, config: VaultConfig) -> None:
        """Replace the single row."""
        now = datetime.now(UTC)
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM vault_config")
                cur.execute(
                    """
                    INSERT INTO vault_config (address, namespace, default_path, auth_method,
                                              token, role_id, secret_id, kube_role,
                                              skip_tls_verify, enabled, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        config.address,
                        config.namespace,
                        config.default_path,
                        str(config.auth_method),
                        config.token,
                        config.role_id,
                        config.secret_id,
                        config.kube_role,
                        config.skip_tls_verify,
                        config.enabled,
                        now,
                    ),
                )

    def delete(self) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM vault_config")


class PostgresSecretEnvStore(SecretEnvStore):
    def __init__(self, cipher: Cipher, connect: Connect = _default_connect) -> None:
        self._cipher = cipher
        self._connect = connect

    def get_secret_values(self, stack_name: str, environment_id: int | None) -> dict[str, str]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT key, value FROM stack_environment_variables
                    WHERE stack_name = %s
                      AND environment_id IS NOT DISTINCT FROM %s
                      AND is_secret
                    """,
                    (stack_name, environment_id),
                )
                rows = cur.fetchall()
        return {key: self._cipher.decrypt(value) for key, value in rows}

    def upsert_secrets(
        self, stack_name: str, environment_id: int | None, values: dict[str, str]
    ) -> None:
        now = datetime.now(UTC)
        try:
            params = [
                (stack_name, environment_id, key, self._cipher.encrypt(value), now)
                for key, value in values.items()
            ]
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.executemany(
                        """
                        INSERT INTO stack_environment_variables
                            (stack_name, environment_id, key, value, is_secret, updated_at)
                        VALUES (%s, %s, %s, %s, TRUE, %s)
                        ON CONFLICT (stack_name, COALESCE(environment_id, -1), key)
                        DO UPDATE SET value = EXCLUDED.value,
                                      is_secret = TRUE,
                                      updated_at = EXCLUDED.updated_at
                        """,
                        params,
                    )
        except (psycopg2.Error, OSError, ValueError) as e:
            raise PersistenceError(str(e)) from e


class PostgresStackSources(StackSources):
    def __init__(self, connect: Connect = _default_connect) -> None:
        self._connect = connect

    def environment_id(self, stack_name: str) -> int | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT environment_id FROM stack_sources WHERE stack_name = %s ORDER BY id LIMIT 1",
                    (stack_name,),
                )
                row = cur.fetchone()
        return row[0] if row else None

    def git_stack_id(self, stack_name: str, environment_id: int | None) -> int | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT git_stack_id FROM stack_sources
                    WHERE stack_name = %s
                      AND environment_id IS NOT DISTINCT FROM %s
                      AND source_type = 'git'
                    ORDER BY id LIMIT 1
                    """,
                    (stack_name, environment_id),
                )
                row = cur.fetchone()
        return row[0] if row else None


class PostgresGitStacks(GitStackCatalog):
    def __init__(self, repos_dir: Path | str | None = None, connect: Connect = _default_connect) -> None:
        super().__init__(repos_dir)
        self._connect = connect

    _COLUMNS = "id, stack_name, repo_path, compose_path, environment_id"

    @staticmethod
    def _row_to_stack(row: tuple) -> GitStack:
        return GitStack(
            id=row[0],
            stack_name=row[1],
            repo_path=Path(row[2]),
            compose_path=row[3],
            environment_id=row[4],
        )

    def list_git_stacks(self) -> list[GitStack]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {self._COLUMNS} FROM git_stacks ORDER BY stack_name")
                rows = cur.fetchall()
        return [self._row_to_stack(r) for r in rows]

    def get(self, stack_id: int) -> GitStack | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {self._COLUMNS} FROM git_stacks WHERE id = %s", (stack_id,))
                row = cur.fetchone()
        return self._row_to_stack(row) if row else None
