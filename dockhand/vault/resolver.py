"""
Effective Vault configuration for one sync pass.

Manifest-declared address, namespace and auth fields win over the global row.
``default_path`` and ``skip_tls_verify`` always come from the global row.
Credentials taken from the global row are still ciphertext after resolution
and are decrypted just before authenticating.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace

from dockhand.vault.errors import ConfigurationError
from dockhand.vault.models import AuthMethod, EffectiveConfig, ParsedManifest, VaultConfig

logger = logging.getLogger(__name__)

_CREDENTIAL_LABELS = {"token": "token", "secret_id": "secret ID"}

_METHOD_CREDENTIALS = {
    AuthMethod.TOKEN: frozenset({"token"}),
    AuthMethod.APPROLE: frozenset({"secret_id"}),
}


def validate_vault_config(cfg: VaultConfig) -> None:
    """Raise ConfigurationError if the row lacks what its auth method needs."""
    if not cfg.address:
        raise ConfigurationError("Vault address is required")
    try:
        method = AuthMethod(cfg.auth_method)
    except ValueError:
        raise ConfigurationError(
            "Valid auth method is required (token, approle, kubernetes)"
        ) from None
    if method == AuthMethod.TOKEN and not cfg.token:
        raise ConfigurationError("Vault token auth requires a token")
    if method == AuthMethod.APPROLE and not (cfg.role_id and cfg.secret_id):
        raise ConfigurationError("Vault AppRole auth requires roleId and secretId")
    if method == AuthMethod.KUBERNETES and not cfg.kube_role:
        raise ConfigurationError("Vault Kubernetes auth requires a role")


def resolve_effective_config(
    global_config: VaultConfig, manifest: ParsedManifest | None = None
) -> EffectiveConfig:
    """Merge manifest overrides onto the global row. Never raises."""
    override = manifest.auth_override if manifest else None
    encrypted: set[str] = set()

    token = override.token if override and override.token else None
    if token is None and global_config.token:
        token = global_config.token
        encrypted.add("token")

    secret_id = override.secret_id if override and override.secret_id else None
    if secret_id is None and global_config.secret_id:
        secret_id = global_config.secret_id
        encrypted.add("secret_id")

    return EffectiveConfig(
        address=(manifest.vault_address if manifest else None) or global_config.address,
        namespace=(manifest.vault_namespace if manifest else None) or global_config.namespace or None,
        default_path=global_config.default_path or None,
        auth_method=override.method if override else AuthMethod(global_config.auth_method),
        token=token,
        role_id=(override.role_id if override else None) or global_config.role_id or None,
        secret_id=secret_id,
        kube_role=(override.kube_role if override else None) or global_config.kube_role or None,
        skip_tls_verify=global_config.skip_tls_verify,
        encrypted_fields=frozenset(encrypted),
    )


def decrypt_credentials(
    config: EffectiveConfig, decrypt: Callable[[str], str]
) -> EffectiveConfig:
    """Return a copy with the auth method's encrypted credential decrypted.

    Encrypted credentials the method does not use are dropped. A decryption
    failure raises ConfigurationError; the ciphertext is never used as a
    credential.
    """
    if not config.encrypted_fields:
        return config

    needed = _METHOD_CREDENTIALS.get(config.auth_method, frozenset())
    values: dict[str, str | None] = {}
    for name in sorted(config.encrypted_fields):
        if name not in needed:
            values[name] = None
            continue
        label = _CREDENTIAL_LABELS[name]
        ciphertext = getattr(config, name)
        try:
            plaintext = decrypt(ciphertext)
        except Exception as e:
            raise ConfigurationError(f"Failed to decrypt Vault {label}: {e}") from e
        if not plaintext:
            raise ConfigurationError(f"Failed to decrypt Vault {label}")
        values[name] = plaintext

    return replace(config, encrypted_fields=frozenset(), **values)
