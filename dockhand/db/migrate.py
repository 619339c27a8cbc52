"""
Lightweight migration runner for ``dockhand/db/migrations/*.sql``.

Usage:
    python -m dockhand.db.migrate status        # show applied vs pending
    python -m dockhand.db.migrate apply         # apply all pending
    python -m dockhand.db.migrate apply 002     # apply specific version
    python -m dockhand.db.migrate apply --dry-run

Just SQL files, SHA-256 checksums, and transactions.
"""

from __future__ import annotations

import hashlib
import logging
import re
import sys
from pathlib import Path

from psycopg2.extras import RealDictCursor

from dockhand.db.connection import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Pattern: 001_name.sql, 002b_name.sql, etc.
_MIGRATION_RE = re.compile(r"^(\d+[a-z]?)_.+\.sql$")


def _discover(migrations_dir: Path | None = None) -> list[tuple[str, Path]]:
    """Return sorted list of (version, path) for all .sql files."""
    d = migrations_dir or MIGRATIONS_DIR
    results: list[tuple[str, Path]] = []
    for f in sorted(d.glob("*.sql")):
        m = _MIGRATION_RE.match(f.name)
        if m:
            results.append((m.group(1), f))
    return results


def _sha256(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _ensure_table(conn) -> None:
    """Create schema_migrations table if it doesn't exist."""
    cur = conn.cursor()
    cur.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version     TEXT PRIMARY KEY,
            filename    TEXT NOT NULL,
            applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            checksum    TEXT
        )
    """)
    conn.commit()


def _applied(conn) -> dict[str, dict]:
    """Return {version: {filename, applied_at, checksum}} for all applied migrations."""
    cur = conn.cursor(cursor_factory=RealDictCursor)
    cur.execute("SELECT version, filename, applied_at, checksum FROM schema_migrations ORDER BY version")
    return {r["version"]: dict(r) for r in cur.fetchall()}


def status(migrations_dir: Path | None = None) -> list[dict]:
    """Return list of dicts with version, filename, status, applied_at."""
    all_files = _discover(migrations_dir)
    with get_connection() as conn:
        _ensure_table(conn)
        applied = _applied(conn)

    rows: list[dict] = []
    for version, path in all_files:
        if version in applied:
            db_checksum = applied[version].get("checksum")
            drift = db_checksum and db_checksum != _sha256(path)
            rows.append({
                "version": version,
                "filename": path.name,
                "status": "DRIFT" if drift else "applied",
                "applied_at": applied[version]["applied_at"],
            })
        else:
            rows.append({
                "version": version,
                "filename": path.name,
                "status": "pending",
                "applied_at": None,
            })
    return rows


def apply(
    version: str | None = None,
    dry_run: bool = False,
    migrations_dir: Path | None = None,
) -> list[str]:
    """Apply pending migrations. Returns list of applied version strings."""
    all_files = _discover(migrations_dir)

    with get_connection() as conn:
        _ensure_table(conn)
        applied = _applied(conn)

        to_apply = [
            (v, path)
            for v, path in all_files
            if v not in applied and (version is None or v == version)
        ]
        if not to_apply:
            logger.info("No pending migrations")
            return []

        applied_versions: list[str] = []
        for v, path in to_apply:
            if dry_run:
                logger.info("[dry-run] Would apply %s (version %s)", path.name, v)
                applied_versions.append(v)
                continue

            cur = conn.cursor()
            try:
                cur.execute(path.read_text())
                cur.execute(
                    "INSERT INTO schema_migrations (version, filename, checksum) VALUES (%s, %s, %s) "
                    "ON CONFLICT (version) DO NOTHING",
                    (v, path.name, _sha256(path)),
                )
                conn.commit()
                logger.info("Applied %s (version %s)", path.name, v)
                applied_versions.append(v)
            except Exception:
                conn.rollback()
                logger.exception("Migration %s failed", path.name)
                raise

        return applied_versions


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = sys.argv[1:]
    if not args or args[0] == "status":
        for r in status():
            at = str(r["applied_at"])[:19] if r["applied_at"] else ""
            print(f"{r['version']:<10} {r['filename']:<45} {r['status']:<10} {at}")
    elif args[0] == "apply":
        rest = [a for a in args[1:] if a != "--dry-run"]
        apply(version=rest[0] if rest else None, dry_run="--dry-run" in args)
    else:
        print(f"Unknown command: {args[0]}", file=sys.stderr)
        print("Usage: python -m dockhand.db.migrate [status|apply [VERSION] [--dry-run]]")
        sys.exit(1)


if __name__ == "__main__":
    main()
