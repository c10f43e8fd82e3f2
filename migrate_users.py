#!/usr/bin/env python3
"""
Re-key user documents by national id (one-shot operator job).

Every ``users/<oldId>`` whose id differs from its ``nationalId`` is moved to
``users/<nationalId>`` in a single atomic batch. Stop every other writer
(the API server included) before running it, and back up the collection.

Usage:
  python migrate_users.py --dry-run   # show the plan only
  python migrate_users.py             # show the plan, ask for confirmation, migrate
  python migrate_users.py --yes       # migrate without prompting
"""
from __future__ import annotations

import argparse
import sys

from app_main import build_backends
from exam_app.config import AppConfig
from exam_app.core.errors import ExamAppError
from exam_app.core.services.user_migration import MigrationPlan, UserMigration
from exam_app.utils.logging_config import configure_logging


def print_plan(plan: MigrationPlan) -> None:
    print(f"\nUsers to migrate: {len(plan.moves)}  (skipped: {len(plan.skipped)})")
    for move in plan.moves:
        print(f"  users/{move.old_id} -> users/{move.new_id}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Re-key user documents by national id")
    parser.add_argument("--dry-run", action="store_true", help="Only print what would be migrated")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    args = parser.parse_args(argv)

    config = AppConfig.load()
    configure_logging(config.LOG_LEVEL)
    store, _ = build_backends(config)
    migration = UserMigration(store)

    try:
        plan = migration.plan()
        print_plan(plan)
        if args.dry_run or plan.is_empty:
            return 0

        confirmed = args.yes
        if not confirmed:
            answer = input("\nThis rewrites the users collection and cannot be undone. Continue? [y/N] ")
            confirmed = answer.strip().lower() in ("y", "yes")
        if not confirmed:
            print("Aborted.")
            return 1

        report = migration.run(confirmed=True)
    except ExamAppError as exc:
        print(f"\nMigration failed: {exc.message}", file=sys.stderr)
        return 2

    print(f"\nMigrated {report.migrated} users, skipped {report.skipped}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
