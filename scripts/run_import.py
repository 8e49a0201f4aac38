#!/usr/bin/env python3
"""Import a blog export file into the configured target instance.

Usage:
  python scripts/run_import.py --export path/to/export.json [--keep-partial]

The target must already have its canonical roles and an owner account; use
--seed-owner-email on an empty database to create them first.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure src is on the import path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from Rehome import repos  # type: ignore
from Rehome.config import load_settings  # type: ignore
from Rehome.dataset import load_export  # type: ignore
from Rehome.db import reset_engine, session_scope  # type: ignore
from Rehome.errors import ImporterError  # type: ignore
from Rehome.identity import generate_credential  # type: ignore
from Rehome.importer import run_import, summarize  # type: ignore
from Rehome.logging import redact_settings, setup_logging  # type: ignore


async def _run(dataset, settings, owner_email: str | None, owner_name: str):
    try:
        if owner_email:
            async with session_scope() as s:
                await repos.seed_instance(
                    s,
                    owner_name=owner_name,
                    owner_email=owner_email,
                    owner_password=generate_credential(),
                )
        return await run_import(dataset, settings=settings)
    finally:
        await reset_engine()


def main() -> int:
    ap = argparse.ArgumentParser(description="Import a blog export into the target instance")
    ap.add_argument("--export", type=Path, required=True, help="Path to the export JSON file")
    ap.add_argument(
        "--keep-partial",
        action="store_true",
        help="Commit successful rows even when some rows fail",
    )
    ap.add_argument("--seed-owner-email", help="Create roles and an owner account first")
    ap.add_argument("--seed-owner-name", default="Owner")
    args = ap.parse_args()

    if not args.export.exists():
        print(f"Error: export not found: {args.export}")
        return 2

    settings = load_settings()
    if args.keep_partial:
        settings = settings.model_copy(update={"import_rollback_on_failure": False})
    setup_logging(settings)

    try:
        dataset = load_export(json.loads(args.export.read_text(encoding="utf-8")))
    except (ValueError, json.JSONDecodeError) as exc:
        print(f"Error: unreadable export: {exc}")
        return 2

    try:
        result = asyncio.run(
            _run(dataset, settings, args.seed_owner_email, args.seed_owner_name)
        )
    except ImporterError as exc:
        print(f"ImporterError: {exc}")
        return 1

    print("=== Import Summary ===")
    print(json.dumps(summarize(result), indent=2, default=str))
    print("\nSettings:", json.dumps(redact_settings(settings), default=str))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
