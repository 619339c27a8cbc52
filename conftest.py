"""
Root-level shared test fixtures.

Every test runs with DOCKHAND_* variables cleared and the config and
master-key caches reset, so nothing from the host leaks in.
"""

from __future__ import annotations

import os

import pytest

from dockhand.config import reset_config
from dockhand.crypto import reset_key_cache


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove DOCKHAND_* env vars and reset cached config."""
    for key in list(os.environ):
        if key.startswith("DOCKHAND_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    reset_key_cache()
    yield
    reset_config()
    reset_key_cache()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Point DOCKHAND_WORKSPACE at a temp dir."""
    ws = tmp_path / "workspace"
    ws.mkdir()
    monkeypatch.setenv("DOCKHAND_WORKSPACE", str(ws))
    reset_config()
    return ws
