#!/usr/bin/env python3
"""Rebuild status flags for one or more users from their legacy status strings.

Uses the store configured via DATABASE_URL / DATABASE_PATH (see src/config.py):
    python scripts/migrate_user.py <uid> [<uid> ...]
    python scripts/migrate_user.py --no-force <uid>

Exits with status 1 if any user's migration failed.
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.logger import configure_logging  # noqa: E402
from src.store import get_store  # noqa: E402
from src.watch.migration import migrate_users  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("user_ids", nargs="+", help="User ids to migrate")
    parser.add_argument(
        "--no-force",
        dest="force",
        action="store_false",
        help="Keep existing flags; only fix inProgress/inWatchlist clashes",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return parser.parse_args(argv)


async def run(user_ids: list[str], force: bool) -> bool:
    async with get_store() as store:
        results = await migrate_users(user_ids, store, force=force)

    for user_id, result in results.items():
        stream = sys.stdout if result.success else sys.stderr
        print(f"{user_id}: {result.message}", file=stream)
    return all(result.success for result in results.values())


def main():
    args = parse_args()
    configure_logging("DEBUG" if args.verbose else None)
    if not asyncio.run(run(args.user_ids, args.force)):
        sys.exit(1)


if __name__ == "__main__":
    main()
