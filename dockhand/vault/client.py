"""
HashiCorp Vault HTTP client.

``VaultClient`` is a transport bound to one Vault address. Authenticating
returns an immutable ``AuthenticatedSession``; reads take that session
explicitly, so the client itself never holds a token and a session is never
shared between stacks.

Supported auth methods: token (validated via lookup-self), AppRole, and
Kubernetes service-account login.

Usage:
    client = VaultClient("https://vault:8200", namespace="team-a")
    session = client.authenticate_with_approle(role_id, secret_id)
    values = client.read_secret(session, "secret/data/myapp")
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx

from dockhand.config import DEFAULT_KUBE_TOKEN_PATH
from dockhand.vault.errors import (
    AuthError,
    ConfigurationError,
    NotAuthenticatedError,
    SecretsError,
    TransportError,
)
from dockhand.vault.models import (
    AuthenticatedSession,
    AuthMethod,
    ConnectionResult,
    EffectiveConfig,
    VaultSecret,
)
from dockhand.vault.paths import ensure_kv2_path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _error_detail(response: httpx.Response) -> str:
    """Vault error bodies look like {"errors": [...]}; fall back to the raw text."""
    text = response.text
    try:
        body = json.loads(text)
    except ValueError:
        return text
    if isinstance(body, dict) and body.get("errors"):
        return ", ".join(str(e) for e in body["errors"])
    return text


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class VaultClient:
    """HTTP transport to one Vault endpoint."""

    def __init__(
        self,
        address: str,
        namespace: str | None = None,
        skip_tls_verify: bool = False,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        kube_token_path: Path | str = DEFAULT_KUBE_TOKEN_PATH,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.address = address.rstrip("/")
        self.namespace = namespace
        self.skip_tls_verify = skip_tls_verify
        self.timeout = timeout
        self.kube_token_path = Path(kube_token_path)
        self._transport = transport

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        token: str | None = None,
        namespace: str | None = None,
        skip_tls_verify: bool | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["X-Vault-Token"] = token
        ns = namespace if namespace is not None else self.namespace
        if ns:
            headers["X-Vault-Namespace"] = ns
        skip = self.skip_tls_verify if skip_tls_verify is None else skip_tls_verify

        url = f"{self.address}/v1/{path.lstrip('/')}"
        try:
            with httpx.Client(
                verify=not skip,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as http:
                response = http.request(method, url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        if response.is_error:
            raise TransportError(_error_detail(response), response.status_code)

        # 204 No Content and friends
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"invalid JSON in response: {e}", response.status_code) from e
        return data if isinstance(data, dict) else {}

    # ─── Authentication ──────────────────────────────────────────────

    def _session(self, token: str) -> AuthenticatedSession:
        return AuthenticatedSession(
            token=token, namespace=self.namespace, skip_tls_verify=self.skip_tls_verify
        )

    def authenticate_with_token(self, token: str) -> AuthenticatedSession:
        """Validate a static token with lookup-self."""
        try:
            self._request("GET", "auth/token/lookup-self", token=token)
        except TransportError as e:
            raise AuthError(f"Token authentication failed: {e}") from e
        return self._session(token)

    def authenticate_with_approle(self, role_id: str, secret_id: str) -> AuthenticatedSession:
        try:
            response = self._request(
                "POST", "auth/approle/login", body={"role_id": role_id, "secret_id": secret_id}
            )
        except TransportError as e:
            raise AuthError(f"AppRole authentication failed: {e}") from e

        client_token = (response.get("auth") or {}).get("client_token")
        if not client_token:
            raise AuthError("AppRole authentication failed: no token returned")
        return self._session(client_token)

    def authenticate_with_kubernetes(self, role: str) -> AuthenticatedSession:
        """Exchange the pod's service-account JWT for a Vault token."""
        try:
            jwt = self.kube_token_path.read_text().strip()
        except OSError as e:
            raise AuthError(
                f"Failed to read Kubernetes service account token from {self.kube_token_path}. "
                "Make sure Dockhand is running in a Kubernetes pod with a service account."
            ) from e

        try:
            response = self._request(
                "POST", "auth/kubernetes/login", body={"role": role, "jwt": jwt}
            )
        except TransportError as e:
            raise AuthError(f"Kubernetes authentication failed: {e}") from e

        client_token = (response.get("auth") or {}).get("client_token")
        if not client_token:
            raise AuthError("Kubernetes authentication failed: no token returned")
        return self._session(client_token)

    # ─── Reads ───────────────────────────────────────────────────────

    def read_secret(self, session: AuthenticatedSession | None, path: str) -> dict[str, str]:
        """Read every field of a secret, unwrapping the KV v2 envelope when present.

        All values are returned as strings.
        """
        if session is None or not session.token:
            raise NotAuthenticatedError("Vault client not authenticated")

        response = self._request(
            "GET",
            path,
            token=session.token,
            namespace=session.namespace,
            skip_tls_verify=session.skip_tls_verify,
        )
        data = response.get("data") or {}
        # KV v2 nests the payload under data.data, KV v1 does not
        if isinstance(data.get("data"), dict):
            data = data["data"]
        return {key: _stringify(value) for key, value in data.items()}

    def get_secrets(
        self, session: AuthenticatedSession | None, path: str, keys: list[str]
    ) -> list[VaultSecret]:
        """Return the requested keys that exist at ``path``; missing keys are only logged."""
        values = self.read_secret(session, path)
        found: list[VaultSecret] = []
        for key in keys:
            if key in values:
                found.append(VaultSecret(key=key, value=values[key]))
            else:
                logger.warning('Secret key "%s" not found at path "%s"', key, path)
        return found

    def test_connection(self) -> ConnectionResult:
        """Unauthenticated health probe. Never raises."""
        try:
            response = self._request("GET", "sys/health")
        except SecretsError as e:
            return ConnectionResult(success=False, error=str(e))
        version = response.get("version") or (response.get("data") or {}).get("version")
        return ConnectionResult(success=True, version=version or "unknown")


# ─── Factory helpers ─────────────────────────────────────────────────


def client_for(
    config: EffectiveConfig,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    kube_token_path: Path | str = DEFAULT_KUBE_TOKEN_PATH,
    transport: httpx.BaseTransport | None = None,
) -> VaultClient:
    return VaultClient(
        config.address,
        namespace=config.namespace,
        skip_tls_verify=config.skip_tls_verify,
        timeout=timeout,
        kube_token_path=kube_token_path,
        transport=transport,
    )


def authenticate(client: VaultClient, config: EffectiveConfig) -> AuthenticatedSession:
    """Log in with the method named by ``config``. Credentials must already be plaintext."""
    if config.encrypted_fields:
        raise ConfigurationError(
            f"Vault credentials still encrypted: {', '.join(sorted(config.encrypted_fields))}"
        )

    method = config.auth_method
    if method == AuthMethod.TOKEN:
        if not config.token:
            raise ConfigurationError("Vault token auth requires a token")
        return client.authenticate_with_token(config.token)
    if method == AuthMethod.APPROLE:
        if not config.role_id or not config.secret_id:
            raise ConfigurationError("Vault AppRole auth requires roleId and secretId")
        return client.authenticate_with_approle(config.role_id, config.secret_id)
    if method == AuthMethod.KUBERNETES:
        if not config.kube_role:
            raise ConfigurationError("Vault Kubernetes auth requires a role")
        return client.authenticate_with_kubernetes(config.kube_role)
    raise ConfigurationError(f"Unknown Vault auth method: {method}")


def check_vault_connection(config: EffectiveConfig, client: VaultClient | None = None) -> ConnectionResult:
    """Authenticate, then probe sys/health. Never raises."""
    client = client or client_for(config)
    try:
        authenticate(client, config)
    except SecretsError as e:
        return ConnectionResult(success=False, error=str(e))
    return client.test_connection()


def fetch_secrets(
    config: EffectiveConfig,
    path: str,
    keys: list[str],
    client: VaultClient | None = None,
) -> list[VaultSecret]:
    """One-shot: authenticate and read ``keys`` from ``path`` (KV v2 segment added if missing)."""
    client = client or client_for(config)
    session = authenticate(client, config)
    return client.get_secrets(session, ensure_kv2_path(path), keys)
