"""KV v2 path convention helper."""

from __future__ import annotations

KV2_MARKER = "/data/"


def ensure_kv2_path(path: str) -> str:
    """Insert the KV v2 ``data`` segment after the mount if it is missing.

    ``secret/myapp`` becomes ``secret/data/myapp``. Paths that already contain
    ``/data/`` and single-segment paths are returned unchanged.
    """
    if KV2_MARKER in path:
        return path
    mount, sep, rest = path.partition("/")
    if not sep:
        return path
    return f"{mount}/data/{rest}"
