"""Errors raised by the Vault secrets sync pipeline."""

from __future__ import annotations


class SecretsError(Exception):
    """Base class for secrets sync failures."""


class ManifestError(SecretsError):
    """The stack's secrets manifest is malformed."""


class ConfigurationError(SecretsError):
    """Vault is unconfigured, disabled, or missing credentials."""


class AuthError(SecretsError):
    """Authentication against Vault failed."""


class NotAuthenticatedError(SecretsError):
    """A read was attempted without an authenticated session."""


class SecretNotFoundError(SecretsError):
    """A requested key is absent from a Vault secret."""

    def __init__(self, key: str, path: str) -> None:
        self.key = key
        self.path = path
        super().__init__(f'Secret "{key}" not found at path "{path}"')


class PersistenceError(SecretsError):
    """Writing synced secrets to the datastore failed."""


class TransportError(SecretsError):
    """An HTTP request to Vault failed.

    ``status_code`` is None when no response was received (connect error, timeout).
    """

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        if status_code is None:
            super().__init__(f"Vault request failed: {detail}")
        else:
            super().__init__(f"Vault request failed ({status_code}): {detail}")
