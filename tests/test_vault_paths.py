"""Tests for dockhand.vault.paths — KV v2 path convention."""

import pytest

from dockhand.vault.paths import ensure_kv2_path


class TestEnsureKv2Path:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("secret/myapp", "secret/data/myapp"),
            ("secret/myapp/prod", "secret/data/myapp/prod"),
            ("secret/data/myapp", "secret/data/myapp"),
            ("kv/team/data/app", "kv/team/data/app"),
            ("secret", "secret"),
        ],
    )
    def test_inserts_data_segment(self, path, expected):
        assert ensure_kv2_path(path) == expected

    def test_mount_level_data_path_gets_second_segment(self):
        # "/data/" only matches with a trailing segment
        assert ensure_kv2_path("secret/data") == "secret/data/data"

    def test_idempotent(self):
        once = ensure_kv2_path("secret/myapp")
        assert ensure_kv2_path(once) == once
