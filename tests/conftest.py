"""
In-memory stand-ins for the sync pipeline's storage ports and Vault client.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from dockhand.vault.errors import AuthError, PersistenceError, TransportError
from dockhand.vault.models import AuthenticatedSession, AuthMethod, GitStack, VaultConfig, VaultSecret
from dockhand.vault.store import (
    Cipher,
    GitStackCatalog,
    SecretEnvStore,
    StackSources,
    VaultConfigStore,
)


class FakeCipher(Cipher):
    """Reversible 'encryption' that makes ciphertext obvious in assertions."""

    def encrypt(self, plaintext: str) -> str:
        return f"enc:{plaintext}"

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext.startswith("enc:"):
            raise ValueError("bad ciphertext")
        return ciphertext[4:]


class InMemoryConfigStore(VaultConfigStore):
    def __init__(self, config: VaultConfig | None = None) -> None:
        self.config = config

    def get(self) -> VaultConfig | None:
        return self.config

    def save(self, config: VaultConfig) -> None:
        self.config = config

    def delete(self) -> None:
        self.config = None


class InMemoryEnvStore(SecretEnvStore):
    def __init__(self) -> None:
        self.rows: dict[tuple[str, int | None], dict[str, str]] = {}
        self.fail_load = False
        self.fail_save = False
        self.upserts: list[tuple[str, int | None, dict[str, str]]] = []

    def get_secret_values(self, stack_name: str, environment_id: int | None) -> dict[str, str]:
        if self.fail_load:
            raise RuntimeError("database unavailable")
        return dict(self.rows.get((stack_name, environment_id), {}))

    def upsert_secrets(
        self, stack_name: str, environment_id: int | None, values: dict[str, str]
    ) -> None:
        if self.fail_save:
            raise PersistenceError("disk full")
        self.upserts.append((stack_name, environment_id, dict(values)))
        self.rows.setdefault((stack_name, environment_id), {}).update(values)


class FakeSources(StackSources):
    def __init__(self, env_ids=None, git_ids=None) -> None:
        self.env_ids = env_ids or {}
        self.git_ids = git_ids or {}

    def environment_id(self, stack_name: str) -> int | None:
        return self.env_ids.get(stack_name)

    def git_stack_id(self, stack_name: str, environment_id: int | None) -> int | None:
        return self.git_ids.get(stack_name)


class FakeStacks(GitStackCatalog):
    def __init__(self, stacks: list[GitStack], repos_dir: Path | None = None) -> None:
        super().__init__(repos_dir)
        self.stacks = stacks

    def list_git_stacks(self) -> list[GitStack]:
        return list(self.stacks)

    def get(self, stack_id: int) -> GitStack | None:
        return next((s for s in self.stacks if s.id == stack_id), None)


class FakeVaultClient:
    """Duck-typed VaultClient serving secrets from a dict of {path: {key: value}}."""

    def __init__(self, secrets: dict[str, dict[str, str]] | None = None) -> None:
        self.secrets = secrets or {}
        self.fail_paths: set[str] = set()
        self.auth_error: str | None = None
        self.logins: list[tuple[str, tuple]] = []
        self.reads: list[str] = []

    def _login(self, method: str, *creds: str) -> AuthenticatedSession:
        self.logins.append((method, creds))
        if self.auth_error:
            raise AuthError(self.auth_error)
        return AuthenticatedSession(token=f"s.{method}")

    def authenticate_with_token(self, token):
        return self._login("token", token)

    def authenticate_with_approle(self, role_id, secret_id):
        return self._login("approle", role_id, secret_id)

    def authenticate_with_kubernetes(self, role):
        return self._login("kubernetes", role)

    def read_secret(self, session, path):
        self.reads.append(path)
        if path in self.fail_paths:
            raise TransportError("permission denied", 403)
        return dict(self.secrets.get(path, {}))

    def get_secrets(self, session, path, keys):
        data = self.read_secret(session, path)
        return [VaultSecret(k, data[k]) for k in keys if k in data]


def token_config(**overrides) -> VaultConfig:
    values = dict(
        address="https://vault.example.com:8200",
        auth_method=AuthMethod.TOKEN,
        token="enc:s.root",
        default_path="secret/data",
    )
    values.update(overrides)
    return VaultConfig(**values)


@pytest.fixture
def make_config():
    return token_config


@pytest.fixture
def make_stacks():
    return FakeStacks


@pytest.fixture
def make_sources():
    return FakeSources


@pytest.fixture
def cipher():
    return FakeCipher()


@pytest.fixture
def config_store():
    return InMemoryConfigStore(token_config())


@pytest.fixture
def env_store():
    return InMemoryEnvStore()


@pytest.fixture
def vault():
    return FakeVaultClient()


@pytest.fixture
def stack_dir(tmp_path):
    d = tmp_path / "web"
    d.mkdir()
    return d


@pytest.fixture
def make_sync(config_store, env_store, cipher, vault):
    """Build a SecretSync over the in-memory fakes; the Vault client records its config."""
    from dockhand.vault.sync import SecretSync

    vault.configs = []

    def factory(effective):
        vault.configs.append(effective)
        return vault

    def build(**kwargs):
        kwargs.setdefault("client_factory", factory)
        return SecretSync(config_store, env_store, cipher, **kwargs)

    return build
