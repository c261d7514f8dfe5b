#!/usr/bin/env python3
"""Apply pending schema migrations and report the schema version.

Usage:
    python scripts/migrate.py [--db ./todo_app.db]
"""
import os
import sys
proj_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if proj_root not in sys.path:
    sys.path.insert(0, proj_root)

import argparse
import asyncio


async def _run():
    from todo_app.db import init_db, schema_version, MIGRATIONS
    applied = await init_db()
    for version, description, _ in MIGRATIONS:
        mark = 'applied now' if version in applied else 'already applied'
        print(f"{version:>4}  {description:<30} {mark}")
    print(f"schema version: {await schema_version()}")


def main(argv=None):
    p = argparse.ArgumentParser(description="Apply pending database migrations")
    p.add_argument("--db", default=None, help="sqlite file or DATABASE_URL")
    args = p.parse_args(argv if argv is not None else sys.argv[1:])
    if args.db:
        os.environ['DATABASE_URL'] = args.db if args.db.startswith('sqlite') else f"sqlite+aiosqlite:///{args.db}"
    asyncio.run(_run())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
