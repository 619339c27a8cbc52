"""
Dockhand API — Vault settings and secret sync endpoints.

Routes:
  GET/PUT/DELETE /api/vault/config          global Vault settings (credentials never returned)
  POST /api/vault/test                      connection test with provided or saved settings
  POST /api/vault/fetch-test                read keys from a path with the saved settings
  POST /api/stacks/{name}/secrets/sync      sync one stack
  POST /api/git/stacks/{id}/secrets/sync    sync a Git stack, redeploying on flagged changes
  POST /api/secrets/sync                    sync every Git stack

Start:
  dockhand serve
  # or
  uvicorn dockhand.api.app:app --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from functools import partial
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from dockhand import __version__
from dockhand.config import get_config
from dockhand.db import close_pool
from dockhand.deploy import ComposeDeployer
from dockhand.vault.client import VaultClient, authenticate, check_vault_connection, client_for
from dockhand.vault.errors import ConfigurationError, SecretsError
from dockhand.vault.models import AuthMethod, EffectiveConfig, VaultConfig
from dockhand.vault.paths import ensure_kv2_path
from dockhand.vault.resolver import (
    decrypt_credentials,
    resolve_effective_config,
    validate_vault_config,
)
from dockhand.vault.store import Cipher, MasterKeyCipher, PostgresVaultConfigStore, VaultConfigStore
from dockhand.vault.sync import SecretSync, default_sync, should_redeploy

logger = logging.getLogger(__name__)

PLACEHOLDER = "***"

ClientFactory = Callable[[EffectiveConfig], VaultClient]


# ─── Dependencies ────────────────────────────────────────────────────


def get_secret_sync() -> SecretSync:
    return default_sync()


def get_config_store() -> VaultConfigStore:
    return PostgresVaultConfigStore()


def get_cipher() -> Cipher:
    return MasterKeyCipher(workspace=get_config().workspace)


def get_deployer() -> ComposeDeployer:
    return ComposeDeployer()


def get_client_factory() -> ClientFactory:
    cfg = get_config()
    return partial(
        client_for,
        timeout=cfg.vault.request_timeout,
        kube_token_path=cfg.vault.kube_token_path,
    )


# ─── Lifespan ────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    from dockhand.scheduler import SecretSyncScheduler

    scheduler = SecretSyncScheduler(
        default_sync(),
        ComposeDeployer(),
        interval_minutes=get_config().vault.sync_interval_minutes,
    )
    scheduler.start()
    try:
        yield
    finally:
        scheduler.stop()
        close_pool()


app = FastAPI(
    title="Dockhand",
    description="Sync Docker stack secrets from HashiCorp Vault.",
    version=__version__,
    lifespan=lifespan,
)


# ─── Pydantic Models ─────────────────────────────────────────────────


class VaultConfigRequest(BaseModel):
    """Body for PUT /api/vault/config and POST /api/vault/test."""

    model_config = ConfigDict(populate_by_name=True)

    address: str | None = None
    namespace: str | None = None
    default_path: str | None = Field(None, alias="defaultPath")
    auth_method: str | None = Field(None, alias="authMethod")
    token: str | None = None
    role_id: str | None = Field(None, alias="roleId")
    secret_id: str | None = Field(None, alias="secretId")
    kube_role: str | None = Field(None, alias="kubeRole")
    skip_tls_verify: bool = Field(False, alias="skipTlsVerify")
    enabled: bool = True
    keep_existing_token: bool = Field(False, alias="keepExistingToken")
    keep_existing_secret_id: bool = Field(False, alias="keepExistingSecretId")


class VaultConfigResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    configured: bool
    enabled: bool
    address: str | None = None
    namespace: str | None = None
    default_path: str | None = Field(None, serialization_alias="defaultPath")
    auth_method: str | None = Field(None, serialization_alias="authMethod")
    has_token: bool = Field(False, serialization_alias="hasToken")
    role_id: str | None = Field(None, serialization_alias="roleId")
    has_secret_id: bool = Field(False, serialization_alias="hasSecretId")
    kube_role: str | None = Field(None, serialization_alias="kubeRole")
    skip_tls_verify: bool = Field(False, serialization_alias="skipTlsVerify")


class FetchTestRequest(BaseModel):
    path: str | None = None
    keys: list[str] | None = None


# ─── Helpers ─────────────────────────────────────────────────────────


def _config_view(cfg: VaultConfig | None) -> dict[str, Any]:
    if cfg is None:
        return VaultConfigResponse(configured=False, enabled=False).model_dump(
            by_alias=True, exclude_none=True
        )
    return VaultConfigResponse(
        configured=True,
        enabled=cfg.enabled,
        address=cfg.address,
        namespace=cfg.namespace,
        default_path=cfg.default_path,
        auth_method=str(cfg.auth_method),
        has_token=bool(cfg.token),
        role_id=cfg.role_id,
        has_secret_id=bool(cfg.secret_id),
        kube_role=cfg.kube_role,
        skip_tls_verify=cfg.skip_tls_verify,
    ).model_dump(by_alias=True, exclude_none=True)


def _stored_credential(
    provided: str | None, keep_existing: bool, existing: str | None, cipher: Cipher
) -> str | None:
    """Ciphertext to store: a new value is encrypted, the placeholder keeps the old one."""
    if provided and provided != PLACEHOLDER:
        return cipher.encrypt(provided)
    if (keep_existing or provided == PLACEHOLDER) and existing:
        return existing
    return None


def _config_from_request(
    body: VaultConfigRequest, existing: VaultConfig | None, cipher: Cipher
) -> VaultConfig:
    """Build a validated row. Credentials the auth method does not use are cleared."""
    method = (body.auth_method or "").strip()
    draft = VaultConfig(
        address=(body.address or "").strip(),
        auth_method=method,
        namespace=(body.namespace or "").strip() or None,
        default_path=(body.default_path or "").strip() or None,
        skip_tls_verify=body.skip_tls_verify,
        enabled=body.enabled,
    )
    if method == AuthMethod.TOKEN:
        draft = replace(
            draft,
            token=_stored_credential(
                body.token, body.keep_existing_token, existing.token if existing else None, cipher
            ),
        )
    elif method == AuthMethod.APPROLE:
        draft = replace(
            draft,
            role_id=(body.role_id or "").strip() or None,
            secret_id=_stored_credential(
                body.secret_id,
                body.keep_existing_secret_id,
                existing.secret_id if existing else None,
                cipher,
            ),
        )
    elif method == AuthMethod.KUBERNETES:
        draft = replace(draft, kube_role=(body.kube_role or "").strip() or None)

    validate_vault_config(draft)
    return replace(draft, auth_method=AuthMethod(method))


def _effective(cfg: VaultConfig, cipher: Cipher) -> EffectiveConfig:
    return decrypt_credentials(resolve_effective_config(cfg), cipher.decrypt)


# ─── Health ──────────────────────────────────────────────────────────


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


# ─── Vault settings ──────────────────────────────────────────────────


@app.get("/api/vault/config")
def read_vault_config(store: VaultConfigStore = Depends(get_config_store)):
    return _config_view(store.get())


@app.put("/api/vault/config")
def update_vault_config(
    body: VaultConfigRequest,
    store: VaultConfigStore = Depends(get_config_store),
    cipher: Cipher = Depends(get_cipher),
):
    try:
        cfg = _config_from_request(body, store.get(), cipher)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    store.save(cfg)
    logger.info("Vault configuration saved (%s, auth=%s)", cfg.address, cfg.auth_method)
    return _config_view(store.get())


@app.delete("/api/vault/config")
def delete_vault_config(store: VaultConfigStore = Depends(get_config_store)):
    store.delete()
    logger.info("Vault configuration removed")
    return {"success": True}


@app.post("/api/vault/test")
def vault_test(
    body: VaultConfigRequest | None = None,
    store: VaultConfigStore = Depends(get_config_store),
    cipher: Cipher = Depends(get_cipher),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Test the provided settings, or the saved ones when no address is given."""
    if body is not None and body.address:
        try:
            cfg = _config_from_request(body, store.get(), cipher)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    else:
        cfg = store.get()
        if cfg is None:
            raise HTTPException(status_code=400, detail="No Vault configuration found")

    try:
        effective = _effective(cfg, cipher)
    except SecretsError as e:
        return {"success": False, "error": str(e)}
    return check_vault_connection(effective, client_factory(effective)).as_dict()


@app.post("/api/vault/fetch-test")
def fetch_test(
    body: FetchTestRequest,
    store: VaultConfigStore = Depends(get_config_store),
    cipher: Cipher = Depends(get_cipher),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Report which of ``keys`` exist at ``path`` without returning their values."""
    if not body.path:
        raise HTTPException(status_code=400, detail="Path is required")
    if not body.keys:
        raise HTTPException(status_code=400, detail="Keys array is required and must not be empty")

    cfg = store.get()
    if cfg is None:
        raise HTTPException(
            status_code=400, detail="No Vault configuration found. Please configure Vault first."
        )
    if not cfg.enabled:
        raise HTTPException(status_code=400, detail="Vault integration is disabled")

    path = ensure_kv2_path(body.path)
    try:
        effective = _effective(cfg, cipher)
        client = client_factory(effective)
        session = authenticate(client, effective)
        data = client.read_secret(session, path)
    except SecretsError as e:
        logger.warning("Vault fetch test on %s failed: %s", path, e)
        return {"success": False, "found": [], "missing": [], "error": str(e)}

    found = [k for k in body.keys if k in data]
    missing = [k for k in body.keys if k not in data]
    return {
        "success": True,
        "found": found,
        "missing": missing,
        "availableKeys": list(data),
        "path": path,
    }


# ─── Secret sync ─────────────────────────────────────────────────────


def _server_error(e: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "error": str(e)})


def _stack_directory(syncer: SecretSync, name: str, env: int | None):
    git_id = syncer.sources.git_stack_id(name, env) if syncer.sources else None
    if git_id is None or syncer.stacks is None:
        return None
    stack = syncer.stacks.get(git_id)
    return syncer.stacks.stack_directory(stack) if stack is not None else None


@app.post("/api/stacks/{name}/secrets/sync")
def sync_stack(
    name: str,
    env: int | None = Query(None),
    dir_: str | None = Query(None, alias="dir"),
    syncer: SecretSync = Depends(get_secret_sync),
):
    try:
        stack_dir = _stack_directory(syncer, name, env)
    except Exception as e:
        logger.exception("Failed to look up directory for stack %s", name)
        return _server_error(e)
    if stack_dir is None and dir_:
        stack_dir = dir_
    if stack_dir is None:
        raise HTTPException(status_code=404, detail="Stack directory not found")

    result = syncer.sync_stack(name, stack_dir, env)

    if result.skipped:
        return {
            "success": True,
            "message": "No .secrets.yaml file found in stack directory",
            "synced": 0,
        }
    if not result.success:
        return JSONResponse(
            status_code=200 if result.synced > 0 else 500,
            content={
                "success": False,
                "message": "Failed to sync some secrets",
                "synced": result.synced,
                "errors": result.errors,
            },
        )
    return {
        "success": True,
        "message": f"Successfully synced {result.synced} secret(s) from Vault",
        "synced": result.synced,
    }


@app.post("/api/git/stacks/{stack_id}/secrets/sync")
def sync_git_stack(
    stack_id: int,
    syncer: SecretSync = Depends(get_secret_sync),
    deployer: ComposeDeployer = Depends(get_deployer),
):
    """Sync a Git stack and force-redeploy it when a flagged secret changed."""
    if syncer.stacks is None:
        raise HTTPException(status_code=404, detail="Git stack not found")
    try:
        stack = syncer.stacks.get(stack_id)
        stack_dir = syncer.stacks.stack_directory(stack) if stack is not None else None
    except Exception as e:
        logger.exception("Failed to look up Git stack %s", stack_id)
        return _server_error(e)
    if stack is None:
        raise HTTPException(status_code=404, detail="Git stack not found")
    if stack_dir is None:
        raise HTTPException(status_code=404, detail="Stack directory not found")

    result = syncer.sync_stack(stack.stack_name, stack_dir, stack.environment_id)
    body = result.as_dict()

    if not should_redeploy(result):
        body["deployed"] = False
        return body

    logger.info(
        "Changes detected for %s (%s), triggering redeploy",
        stack.stack_name,
        ", ".join(result.trigger_redeploy_secrets),
    )
    # Values were just written, so read them back for compose substitution.
    try:
        env = syncer.env_store.get_secret_values(stack.stack_name, result.environment_id)
    except Exception as e:
        logger.exception("Failed to load secrets for %s redeploy", stack.stack_name)
        return _server_error(e)
    deploy = deployer.deploy(stack_dir, env=env, force=True)
    body.update(
        deployed=True,
        deploySuccess=deploy.success,
        deployOutput=deploy.output,
        deployError=deploy.error,
    )
    return body


@app.post("/api/secrets/sync")
def sync_all(syncer: SecretSync = Depends(get_secret_sync)):
    return {name: result.as_dict() for name, result in syncer.sync_all().items()}
