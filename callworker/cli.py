"""
Command line entry point.

Usage:
    python -m callworker [--config PATH] run [--ephemeral]
    python -m callworker status
    python -m callworker release
    python -m callworker set-identity 1 +15551230001
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from typing import List, Optional

from callworker.config.settings import DEFAULT_CONFIG_PATH, ConfigError, load_config
from callworker.core.identities import identity_slots, save_identity
from callworker.core.kv_store import SQLiteKeyValueStore
from callworker.core.lease_store import LeaseStore
from callworker.logging_config import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="callworker", description="Call work queue worker")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to the YAML config file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Poll for work and process calls until interrupted")
    run.add_argument("--ephemeral", action="store_true", help="Keep the lease in memory instead of SQLite")
    sub.add_parser("status", help="Print the persisted lease and identities as JSON")
    sub.add_parser("release", help="Force-clear the persisted lease")

    ident = sub.add_parser("set-identity", help="Save a sending identity (SIM number) for a slot")
    ident.add_argument("slot", type=int, choices=(1, 2))
    ident.add_argument("value", nargs="?", default="", help="Identity; omit to clear the slot")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    if args.command == "run":
        from callworker.engine import main as run_worker

        try:
            asyncio.run(run_worker(args.config, ephemeral=args.ephemeral))
        except KeyboardInterrupt:
            pass
        return 0

    configure_logging(config.logging.level, config.logging.format)
    kv = SQLiteKeyValueStore(config.lease.db_path)

    if args.command == "status":
        lease_store = LeaseStore(kv, staleness_seconds=config.lease.staleness_sec)
        lease = lease_store.snapshot_sync()
        age_ms = lease.age_ms(int(time.time() * 1000))
        print(json.dumps({
            "in_progress": lease.in_progress,
            "started_at_ms": lease.started_at_ms,
            "age_ms": age_ms,
            "artifact_name": lease.artifact_name,
            "duration_ms": lease.duration_ms,
            "identities": identity_slots(kv, config.identities),
        }, indent=2))
        return 0

    if args.command == "release":
        LeaseStore(kv).release_sync()
        print("Lease released")
        return 0

    if args.command == "set-identity":
        save_identity(kv, args.slot, args.value)
        print(f"Identity for slot {args.slot} saved")
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
