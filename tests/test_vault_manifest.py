"""Tests for dockhand.vault.manifest — secrets manifest parsing and normalization."""

import pytest

from dockhand.vault.errors import ManifestError
from dockhand.vault.manifest import (
    MANIFEST_FILE_NAMES,
    find_manifest_file,
    normalize_manifest,
    parse_and_normalize,
    parse_manifest,
    read_manifest,
)
from dockhand.vault.models import AuthMethod, SecretMapping


class TestParseManifest:
    def test_bare_string_secret(self):
        m = parse_manifest("secrets:\n  - db_password\n")
        assert len(m.secrets) == 1
        s = m.secrets[0]
        assert s.name == "DB_PASSWORD"
        assert s.key == "db_password"
        assert s.path is None
        assert s.trigger_redeploy is None

    def test_bare_string_casing(self):
        m = parse_manifest("secrets:\n  - Api_Key\n")
        assert m.secrets[0].name == "API_KEY"
        assert m.secrets[0].key == "api_key"

    def test_object_secret(self):
        content = """
secrets:
  - name: API_KEY
    key: apiKey
    path: secret/data/shared
    triggerRedeploy: true
"""
        s = parse_manifest(content).secrets[0]
        assert s.name == "API_KEY"
        assert s.key == "apiKey"
        assert s.path == "secret/data/shared"
        assert s.trigger_redeploy is True

    def test_object_key_defaults_to_lowercased_name(self):
        s = parse_manifest("secrets:\n  - name: SMTP_PASS\n").secrets[0]
        assert s.key == "smtp_pass"

    def test_vault_block(self):
        content = """
vault:
  address: https://vault.internal:8200
  namespace: team-a
  path: kv/myapp
  triggerRedeploy: true
  auth:
    method: approle
    role_id: rid
    secret_id: sid
secrets:
  - x
"""
        m = parse_manifest(content)
        assert m.vault.address == "https://vault.internal:8200"
        assert m.vault.namespace == "team-a"
        assert m.vault.path == "kv/myapp"
        assert m.vault.trigger_redeploy is True
        assert m.vault.auth.method == AuthMethod.APPROLE
        assert m.vault.auth.role_id == "rid"
        assert m.vault.auth.secret_id == "sid"

    def test_auth_without_method_is_ignored(self):
        m = parse_manifest("vault:\n  auth:\n    token: abc\nsecrets: []\n")
        assert m.vault.auth is None

    def test_unknown_auth_method(self):
        with pytest.raises(ManifestError, match="Unknown Vault auth method: ldap"):
            parse_manifest("vault:\n  auth:\n    method: ldap\nsecrets: []\n")

    def test_empty_secrets_list(self):
        assert parse_manifest("secrets: []\n").secrets == ()

    def test_invalid_yaml(self):
        with pytest.raises(ManifestError, match="Invalid secrets file"):
            parse_manifest("secrets: [unclosed\n")

    def test_non_object_root(self):
        with pytest.raises(ManifestError, match="expected YAML object"):
            parse_manifest("- a\n- b\n")

    def test_empty_document(self):
        with pytest.raises(ManifestError, match="expected YAML object"):
            parse_manifest("")

    def test_missing_secrets(self):
        with pytest.raises(ManifestError, match='"secrets" must be an array'):
            parse_manifest("vault:\n  path: secret/x\n")

    def test_secrets_not_a_list(self):
        with pytest.raises(ManifestError, match='"secrets" must be an array'):
            parse_manifest("secrets: db_password\n")

    @pytest.mark.parametrize("item", ["42", "{key: nope}", "{name: ''}", "[a, b]"])
    def test_invalid_secret_definition(self, item):
        with pytest.raises(ManifestError, match="Invalid secret definition"):
            parse_manifest(f"secrets:\n  - {item}\n")

    def test_non_bool_trigger_rejected(self):
        with pytest.raises(ManifestError, match="must be true or false"):
            parse_manifest("secrets:\n  - name: A\n    triggerRedeploy: 'yes please'\n")


class TestNormalizeManifest:
    def _trigger(self, vault_level, secret_level):
        lines = []
        if vault_level is not None:
            lines += ["vault:", f"  triggerRedeploy: {str(vault_level).lower()}"]
        lines += ["secrets:", "  - name: A"]
        if secret_level is not None:
            lines.append(f"    triggerRedeploy: {str(secret_level).lower()}")
        parsed = parse_and_normalize("\n".join(lines) + "\n")
        (mapping,) = parsed.secrets_by_path["secret/data/data"]
        return mapping.trigger_redeploy

    @pytest.mark.parametrize(
        "vault_level,secret_level,expected",
        [
            (None, None, False),
            (True, None, True),
            (False, None, False),
            (None, True, True),
            (True, False, False),
            (False, True, True),
        ],
    )
    def test_trigger_redeploy_precedence(self, vault_level, secret_level, expected):
        assert self._trigger(vault_level, secret_level) is expected

    def test_groups_by_path_in_manifest_order(self):
        content = """
vault:
  path: secret/app
secrets:
  - a
  - name: B
    path: secret/shared
  - c
"""
        parsed = parse_and_normalize(content)
        assert list(parsed.secrets_by_path) == ["secret/data/app", "secret/data/shared"]
        assert [m.env_var for m in parsed.secrets_by_path["secret/data/app"]] == ["A", "C"]
        assert parsed.secrets_by_path["secret/data/shared"] == [
            SecretMapping(env_var="B", vault_key="b", trigger_redeploy=False)
        ]

    def test_every_secret_in_exactly_one_group(self):
        parsed = parse_and_normalize("secrets:\n  - a\n  - b\n  - name: C\n    path: kv/x\n")
        names = [m.env_var for group in parsed.secrets_by_path.values() for m in group]
        assert sorted(names) == ["A", "B", "C"]

    def test_default_path_used_without_vault_path(self):
        parsed = normalize_manifest(parse_manifest("secrets: [a]\n"), "kv/team")
        assert parsed.vault_path == "kv/team"
        assert list(parsed.secrets_by_path) == ["kv/data/team"]

    def test_vault_path_beats_default(self):
        parsed = normalize_manifest(parse_manifest("vault: {path: secret/mine}\nsecrets: [a]\n"), "kv/team")
        assert parsed.vault_path == "secret/mine"
        assert list(parsed.secrets_by_path) == ["secret/data/mine"]

    def test_overrides_carried(self):
        content = """
vault:
  address: https://other:8200
  namespace: ns1
  auth: {method: token, token: s.plain}
secrets: [a]
"""
        parsed = parse_and_normalize(content)
        assert parsed.vault_address == "https://other:8200"
        assert parsed.vault_namespace == "ns1"
        assert parsed.auth_override.token == "s.plain"


class TestManifestFiles:
    def test_no_manifest(self, stack_dir):
        assert find_manifest_file(stack_dir) is None
        assert read_manifest(stack_dir) is None

    def test_discovery_order(self, stack_dir):
        for name in reversed(MANIFEST_FILE_NAMES):
            (stack_dir / name).write_text("secrets: []\n")
            assert find_manifest_file(stack_dir).name == name
        assert find_manifest_file(stack_dir).name == ".secrets.yaml"

    def test_directory_named_like_manifest_ignored(self, stack_dir):
        (stack_dir / ".secrets.yaml").mkdir()
        (stack_dir / "secrets.yml").write_text("secrets: [a]\n")
        assert find_manifest_file(stack_dir).name == "secrets.yml"

    def test_read_manifest(self, stack_dir):
        (stack_dir / ".secrets.yml").write_text("secrets:\n  - db_password\n")
        parsed = read_manifest(stack_dir, "secret/web")
        assert parsed.secrets_by_path == {
            "secret/data/web": [SecretMapping("DB_PASSWORD", "db_password", False)]
        }

    def test_read_manifest_malformed(self, stack_dir):
        (stack_dir / ".secrets.yaml").write_text("secrets: 5\n")
        with pytest.raises(ManifestError):
            read_manifest(stack_dir)
