"""
Dockhand CLI — entry point for all operations.

Usage:
    dockhand init-key               # Create the master encryption key
    dockhand migrate                # Apply pending database migrations
    dockhand sync STACK --dir PATH  # Sync one stack's secrets from Vault
    dockhand sync-all               # Sync every Git stack
    dockhand vault-test             # Test the saved Vault settings
    dockhand serve                  # Start the API server
    dockhand version                # Show version
"""

from __future__ import annotations

import argparse
import json
import logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="dockhand",
        description="Dockhand — sync Docker stack secrets from HashiCorp Vault.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("version", help="Show version")
    subparsers.add_parser("init-key", help="Create the master encryption key")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Run database migrations")
    migrate_parser.add_argument(
        "--dry-run", action="store_true", help="List pending migrations without applying"
    )
    migrate_parser.add_argument("--status", action="store_true", help="Show applied vs pending")

    # sync
    sync_parser = subparsers.add_parser("sync", help="Sync one stack's secrets from Vault")
    sync_parser.add_argument("stack", help="Stack name")
    sync_parser.add_argument("--dir", required=True, help="Stack directory holding .secrets.yaml")
    sync_parser.add_argument("--env", type=int, default=None, help="Environment ID")

    subparsers.add_parser("sync-all", help="Sync every Git stack")
    subparsers.add_parser("vault-test", help="Test the saved Vault settings")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: DOCKHAND_API_PORT)")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version or args.command == "version":
        from dockhand import __version__

        print(f"dockhand {__version__}")
        return 0

    if args.command == "init-key":
        return _cmd_init_key()
    elif args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "sync":
        return _cmd_sync(args)
    elif args.command == "sync-all":
        return _cmd_sync_all()
    elif args.command == "vault-test":
        return _cmd_vault_test()
    elif args.command == "serve":
        return _cmd_serve(args)
    else:
        parser.print_help()
        return 0


def _cmd_init_key() -> int:
    from dockhand.config import get_config
    from dockhand.crypto import init_master_key

    key_path = init_master_key(get_config().workspace)
    print(f"Master key: {key_path}")
    return 0


def _cmd_migrate(args: argparse.Namespace) -> int:
    from dockhand.db import migrate

    try:
        if args.status:
            for r in migrate.status():
                at = str(r["applied_at"])[:19] if r["applied_at"] else ""
                print(f"{r['version']:<10} {r['filename']:<45} {r['status']:<10} {at}")
            return 0
        applied = migrate.apply(dry_run=args.dry_run)
    except Exception as e:
        print(f"Error: Migration failed: {e}")
        print("Check DOCKHAND_DB_* environment variables and ensure PostgreSQL is running.")
        return 1

    verb = "Would apply" if args.dry_run else "Applied"
    print(f"{verb} {len(applied)} migration(s)")
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    from dockhand.vault.sync import sync_stack_secrets

    result = sync_stack_secrets(args.stack, args.dir, args.env)
    print(json.dumps(result.as_dict(), indent=2))
    return 0 if result.success else 1


def _cmd_sync_all() -> int:
    from dockhand.vault.sync import sync_all_stack_secrets

    results = sync_all_stack_secrets()
    print(json.dumps({name: r.as_dict() for name, r in results.items()}, indent=2))
    return 0 if all(r.success for r in results.values()) else 1


def _cmd_vault_test() -> int:
    from dockhand.config import get_config
    from dockhand.vault.client import check_vault_connection, client_for
    from dockhand.vault.errors import SecretsError
    from dockhand.vault.resolver import decrypt_credentials, resolve_effective_config
    from dockhand.vault.store import MasterKeyCipher, PostgresVaultConfigStore

    cfg = get_config()
    saved = PostgresVaultConfigStore().get()
    if saved is None:
        print("No Vault configuration found")
        return 1

    cipher = MasterKeyCipher(workspace=cfg.workspace)
    try:
        effective = decrypt_credentials(resolve_effective_config(saved), cipher.decrypt)
    except SecretsError as e:
        print(f"Vault connection failed: {e}")
        return 1

    client = client_for(
        effective, timeout=cfg.vault.request_timeout, kube_token_path=cfg.vault.kube_token_path
    )
    result = check_vault_connection(effective, client)
    if result.success:
        print(f"Connected to Vault {effective.address} (version {result.version})")
        return 0
    print(f"Vault connection failed: {result.error}")
    return 1


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from dockhand.config import get_config

    port = args.port or get_config().api_port
    print(f"Starting Dockhand API on {args.host}:{port}...")
    uvicorn.run("dockhand.api.app:app", host=args.host, port=port)
    return 0
