"""
Secrets manifest parser.

A Git stack declares which Vault secrets it needs in a ``.secrets.yaml`` file
next to its compose file:

    vault:
      path: secret/data/myapp        # optional, default from global config
      address: https://vault:8200    # optional override
      namespace: team-a              # optional override
      auth: {method: approle, role_id: ..., secret_id: ...}
      triggerRedeploy: false         # default for every secret below
    secrets:
      - db_password                  # DB_PASSWORD <- db_password
      - name: API_KEY
        key: api_key
        path: secret/data/shared     # per-secret path override
        triggerRedeploy: true

Usage:
    from dockhand.vault.manifest import read_manifest
    parsed = read_manifest(stack_dir)   # None when the stack has no manifest
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from dockhand.vault.errors import ManifestError
from dockhand.vault.models import (
    AuthMethod,
    AuthOverride,
    ParsedManifest,
    SecretDefinition,
    SecretManifest,
    SecretMapping,
    VaultBlock,
)
from dockhand.vault.paths import ensure_kv2_path

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAMES = (".secrets.yaml", ".secrets.yml", "secrets.yaml", "secrets.yml")

DEFAULT_VAULT_PATH = "secret/data"


def _optional_str(block: dict, key: str) -> str | None:
    value = block.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ManifestError(f'Invalid secrets file: "{key}" must be a string')
    return value


def _optional_bool(block: dict, key: str, where: str) -> bool | None:
    value = block.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise ManifestError(f'Invalid secrets file: "{key}" in {where} must be true or false')


def _parse_auth(raw: Any) -> AuthOverride | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ManifestError('Invalid secrets file: "vault.auth" must be an object')
    method = raw.get("method")
    if method is None:
        return None
    try:
        auth_method = AuthMethod(method)
    except ValueError:
        raise ManifestError(f"Unknown Vault auth method: {method}") from None
    return AuthOverride(
        method=auth_method,
        token=_optional_str(raw, "token"),
        role_id=_optional_str(raw, "role_id"),
        secret_id=_optional_str(raw, "secret_id"),
        kube_role=_optional_str(raw, "kube_role"),
    )


def _parse_vault_block(raw: Any) -> VaultBlock | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ManifestError('Invalid secrets file: "vault" must be an object')
    return VaultBlock(
        address=_optional_str(raw, "address"),
        namespace=_optional_str(raw, "namespace"),
        path=_optional_str(raw, "path"),
        auth=_parse_auth(raw.get("auth")),
        trigger_redeploy=bool(_optional_bool(raw, "triggerRedeploy", "vault")),
    )


def _parse_secret(item: Any) -> SecretDefinition:
    if isinstance(item, str):
        return SecretDefinition(name=item.upper(), key=item.lower())

    if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"]:
        name = item["name"]
        return SecretDefinition(
            name=name,
            key=_optional_str(item, "key") or name.lower(),
            path=_optional_str(item, "path"),
            trigger_redeploy=_optional_bool(item, "triggerRedeploy", f'secret "{name}"'),
        )

    raise ManifestError(f"Invalid secret definition: {json.dumps(item, default=str)}")


def parse_manifest(content: str) -> SecretManifest:
    """Parse manifest YAML text. Raises ManifestError on any malformed shape."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid secrets file: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError("Invalid secrets file: expected YAML object")

    vault = _parse_vault_block(data.get("vault"))

    secrets = data.get("secrets")
    if not isinstance(secrets, list):
        raise ManifestError('Invalid secrets file: "secrets" must be an array')

    return SecretManifest(
        secrets=tuple(_parse_secret(item) for item in secrets),
        vault=vault,
    )


def normalize_manifest(
    manifest: SecretManifest, default_path: str = DEFAULT_VAULT_PATH
) -> ParsedManifest:
    """Resolve paths and redeploy flags, grouping secrets by final Vault path."""
    vault = manifest.vault or VaultBlock()
    base_path = vault.path or default_path
    trigger_default = vault.trigger_redeploy

    secrets_by_path: dict[str, list[SecretMapping]] = {}
    for secret in manifest.secrets:
        path = ensure_kv2_path(secret.path or base_path)
        trigger = (
            secret.trigger_redeploy if secret.trigger_redeploy is not None else trigger_default
        )
        secrets_by_path.setdefault(path, []).append(
            SecretMapping(env_var=secret.name, vault_key=secret.key, trigger_redeploy=trigger)
        )

    return ParsedManifest(
        vault_path=base_path,
        secrets_by_path=secrets_by_path,
        trigger_redeploy_default=trigger_default,
        vault_address=vault.address,
        vault_namespace=vault.namespace,
        auth_override=vault.auth,
    )


def parse_and_normalize(content: str, default_path: str = DEFAULT_VAULT_PATH) -> ParsedManifest:
    return normalize_manifest(parse_manifest(content), default_path)


def find_manifest_file(stack_dir: Path | str) -> Path | None:
    """Return the first manifest file present in ``stack_dir``, or None."""
    for name in MANIFEST_FILE_NAMES:
        candidate = Path(stack_dir) / name
        if candidate.is_file():
            return candidate
    return None


def read_manifest(
    stack_dir: Path | str, default_path: str = DEFAULT_VAULT_PATH
) -> ParsedManifest | None:
    """Find, read and normalize the stack's manifest.

    Returns None when the stack has no manifest. Raises ManifestError when the
    file exists but cannot be read or parsed.
    """
    path = find_manifest_file(stack_dir)
    if path is None:
        return None

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot read {path.name}: {e}") from e

    try:
        return parse_and_normalize(content, default_path)
    except ManifestError:
        logger.error("Failed to parse %s", path)
        raise
