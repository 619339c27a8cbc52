"""
Dockhand Vault integration — sync Git stack secrets from HashiCorp Vault.

Public API:
    sync_stack_secrets(name, dir, env_id)  → SyncResult for one stack
    sync_all_stack_secrets()               → {stack_name: SyncResult} for every Git stack
    should_redeploy(result)                → True when a flagged secret changed
    read_manifest(stack_dir)               → ParsedManifest or None
    ensure_kv2_path(path)                  → path with the KV v2 "data" segment
"""

from __future__ import annotations

from dockhand.vault.manifest import read_manifest
from dockhand.vault.models import SyncResult
from dockhand.vault.paths import ensure_kv2_path
from dockhand.vault.sync import should_redeploy, sync_all_stack_secrets, sync_stack_secrets

__all__ = [
    "SyncResult",
    "ensure_kv2_path",
    "read_manifest",
    "should_redeploy",
    "sync_all_stack_secrets",
    "sync_stack_secrets",
]
