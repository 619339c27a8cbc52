"""Tests for dockhand.vault.client — Vault HTTP wire protocol via httpx.MockTransport."""

import json

import httpx
import pytest

from dockhand.vault.client import VaultClient, authenticate, check_vault_connection, fetch_secrets
from dockhand.vault.errors import (
    AuthError,
    ConfigurationError,
    NotAuthenticatedError,
    TransportError,
)
from dockhand.vault.models import AuthenticatedSession, AuthMethod, EffectiveConfig

ADDR = "https://vault.example.com:8200"


class Recorder:
    """MockTransport handler that serves canned responses by (method, path)."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"errors": []})
        status, body = self.routes[key]
        return httpx.Response(status, json=body)


def _client(routes=None, **kwargs):
    rec = Recorder(routes)
    client = VaultClient(ADDR, transport=httpx.MockTransport(rec), **kwargs)
    return client, rec


SESSION = AuthenticatedSession(token="s.abc")


class TestAuthentication:
    def test_token_lookup_self(self):
        client, rec = _client({("GET", "/v1/auth/token/lookup-self"): (200, {"data": {}})})
        session = client.authenticate_with_token("s.static")
        assert session.token == "s.static"
        assert rec.requests[0].headers["X-Vault-Token"] == "s.static"

    def test_token_rejected(self):
        client, _ = _client(
            {("GET", "/v1/auth/token/lookup-self"): (403, {"errors": ["permission denied"]})}
        )
        with pytest.raises(AuthError, match="Token authentication failed.*permission denied"):
            client.authenticate_with_token("s.bad")

    def test_approle_login(self):
        client, rec = _client(
            {("POST", "/v1/auth/approle/login"): (200, {"auth": {"client_token": "s.issued"}})}
        )
        session = client.authenticate_with_approle("rid", "sid")
        assert session.token == "s.issued"
        assert json.loads(rec.requests[0].content) == {"role_id": "rid", "secret_id": "sid"}
        assert "X-Vault-Token" not in rec.requests[0].headers

    def test_approle_no_token(self):
        client, _ = _client({("POST", "/v1/auth/approle/login"): (200, {"auth": {}})})
        with pytest.raises(AuthError, match="no token returned"):
            client.authenticate_with_approle("rid", "sid")

    def test_approle_rejected(self):
        client, _ = _client(
            {("POST", "/v1/auth/approle/login"): (400, {"errors": ["invalid role or secret ID"]})}
        )
        with pytest.raises(AuthError, match="AppRole authentication failed"):
            client.authenticate_with_approle("rid", "bad")

    def test_kubernetes_login(self, tmp_path):
        jwt = tmp_path / "token"
        jwt.write_text("eyJhbGciOi.jwt\n")
        client, rec = _client(
            {("POST", "/v1/auth/kubernetes/login"): (200, {"auth": {"client_token": "s.k8s"}})},
            kube_token_path=jwt,
        )
        session = client.authenticate_with_kubernetes("web-role")
        assert session.token == "s.k8s"
        assert json.loads(rec.requests[0].content) == {"role": "web-role", "jwt": "eyJhbGciOi.jwt"}

    def test_kubernetes_token_missing(self, tmp_path):
        client, rec = _client(kube_token_path=tmp_path / "absent")
        with pytest.raises(AuthError, match="Failed to read Kubernetes service account token"):
            client.authenticate_with_kubernetes("web-role")
        assert rec.requests == []

    def test_session_carries_namespace_and_tls(self):
        client, _ = _client(
            {("GET", "/v1/auth/token/lookup-self"): (200, {})},
            namespace="team-a",
            skip_tls_verify=True,
        )
        session = client.authenticate_with_token("s.x")
        assert session.namespace == "team-a"
        assert session.skip_tls_verify is True

    def test_session_repr_hides_token(self):
        assert "s.abc" not in repr(SESSION)


class TestReadSecret:
    def test_kv2_unwrap(self):
        client, rec = _client(
            {
                ("GET", "/v1/secret/data/myapp"): (
                    200,
                    {"data": {"data": {"db_password": "hunter2"}, "metadata": {"version": 3}}},
                )
            }
        )
        assert client.read_secret(SESSION, "secret/data/myapp") == {"db_password": "hunter2"}
        assert rec.requests[0].headers["X-Vault-Token"] == "s.abc"

    def test_kv1_flat(self):
        client, _ = _client({("GET", "/v1/kv/myapp"): (200, {"data": {"api_key": "k"}})})
        assert client.read_secret(SESSION, "kv/myapp") == {"api_key": "k"}

    def test_values_stringified(self):
        payload = {"port": 5432, "debug": True, "off": False, "none": None, "obj": {"a": 1}, "list": [1, 2]}
        client, _ = _client({("GET", "/v1/secret/data/x"): (200, {"data": {"data": payload}})})
        values = client.read_secret(SESSION, "secret/data/x")
        assert values == {
            "port": "5432",
            "debug": "true",
            "off": "false",
            "none": "null",
            "obj": '{"a": 1}',
            "list": "[1, 2]",
        }

    def test_namespace_header(self):
        client, rec = _client({("GET", "/v1/secret/data/x"): (200, {"data": {"data": {}}})})
        client.read_secret(AuthenticatedSession(token="t", namespace="team-b"), "secret/data/x")
        assert rec.requests[0].headers["X-Vault-Namespace"] == "team-b"

    def test_no_namespace_header_by_default(self):
        client, rec = _client({("GET", "/v1/secret/data/x"): (200, {"data": {"data": {}}})})
        client.read_secret(SESSION, "secret/data/x")
        assert "X-Vault-Namespace" not in rec.requests[0].headers

    def test_not_authenticated(self):
        client, rec = _client()
        with pytest.raises(NotAuthenticatedError):
            client.read_secret(None, "secret/data/x")
        with pytest.raises(NotAuthenticatedError):
            client.read_secret(AuthenticatedSession(token=""), "secret/data/x")
        assert rec.requests == []

    def test_error_status(self):
        client, _ = _client({("GET", "/v1/secret/data/x"): (403, {"errors": ["permission denied"]})})
        with pytest.raises(TransportError) as exc:
            client.read_secret(SESSION, "secret/data/x")
        assert exc.value.status_code == 403
        assert str(exc.value) == "Vault request failed (403): permission denied"

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = VaultClient(ADDR, transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError) as exc:
            client.read_secret(SESSION, "secret/data/x")
        assert exc.value.status_code is None
        assert "connection refused" in str(exc.value)

    def test_trailing_slash_address(self):
        rec = Recorder({("GET", "/v1/secret/data/x"): (200, {"data": {"data": {"k": "v"}}})})
        client = VaultClient(ADDR + "/", transport=httpx.MockTransport(rec))
        assert client.read_secret(SESSION, "secret/data/x") == {"k": "v"}


class TestGetSecrets:
    def test_missing_keys_omitted(self):
        client, _ = _client(
            {("GET", "/v1/secret/data/x"): (200, {"data": {"data": {"a": "1", "b": "2"}}})}
        )
        found = client.get_secrets(SESSION, "secret/data/x", ["a", "missing", "b"])
        assert [(s.key, s.value) for s in found] == [("a", "1"), ("b", "2")]


class TestTestConnection:
    def test_version_from_health(self):
        client, rec = _client({("GET", "/v1/sys/health"): (200, {"version": "1.15.2"})})
        result = client.test_connection()
        assert result.success is True
        assert result.version == "1.15.2"
        assert "X-Vault-Token" not in rec.requests[0].headers

    def test_unknown_version(self):
        client, _ = _client({("GET", "/v1/sys/health"): (200, {})})
        assert client.test_connection().version == "unknown"

    def test_never_raises(self):
        client, _ = _client({("GET", "/v1/sys/health"): (503, {"errors": ["sealed"]})})
        result = client.test_connection()
        assert result.success is False
        assert "sealed" in result.error
        assert result.as_dict() == {"success": False, "error": result.error}


def _effective(**kw):
    values = dict(address=ADDR, auth_method=AuthMethod.TOKEN, token="s.plain")
    values.update(kw)
    return EffectiveConfig(**values)


class TestAuthenticateDispatch:
    def test_token(self):
        client, rec = _client({("GET", "/v1/auth/token/lookup-self"): (200, {})})
        assert authenticate(client, _effective()).token == "s.plain"

    def test_approle_requires_both_credentials(self):
        client, _ = _client()
        with pytest.raises(ConfigurationError, match="roleId and secretId"):
            authenticate(client, _effective(auth_method=AuthMethod.APPROLE, role_id="rid"))

    def test_kubernetes_requires_role(self):
        client, _ = _client()
        with pytest.raises(ConfigurationError, match="requires a role"):
            authenticate(client, _effective(auth_method=AuthMethod.KUBERNETES))

    def test_refuses_ciphertext(self):
        client, rec = _client()
        with pytest.raises(ConfigurationError, match="still encrypted"):
            authenticate(client, _effective(encrypted_fields=frozenset({"token"})))
        assert rec.requests == []


class TestModuleHelpers:
    def test_check_vault_connection_auth_failure(self):
        client, _ = _client({("GET", "/v1/auth/token/lookup-self"): (403, {"errors": ["denied"]})})
        result = check_vault_connection(_effective(), client)
        assert result.success is False
        assert "Token authentication failed" in result.error

    def test_check_vault_connection_success(self):
        client, _ = _client(
            {
                ("GET", "/v1/auth/token/lookup-self"): (200, {}),
                ("GET", "/v1/sys/health"): (200, {"version": "1.16.0"}),
            }
        )
        assert check_vault_connection(_effective(), client).as_dict() == {
            "success": True,
            "version": "1.16.0",
        }

    def test_fetch_secrets_normalizes_path(self):
        client, rec = _client(
            {
                ("GET", "/v1/auth/token/lookup-self"): (200, {}),
                ("GET", "/v1/secret/data/myapp"): (200, {"data": {"data": {"k": "v"}}}),
            }
        )
        found = fetch_secrets(_effective(), "secret/myapp", ["k"], client)
        assert [(s.key, s.value) for s in found] == [("k", "v")]
        assert rec.requests[-1].url.path == "/v1/secret/data/myapp"
