#!/usr/bin/env python3
"""Create a user, or reset the password of an existing one.

Usage:
    python scripts/create_user.py username [password] [--db ./todo_app.db]

The password is prompted for when omitted.
"""
# Make the script runnable from anywhere: the project root (parent of
# scripts/) holds the `todo_app` package.
import os
import sys
proj_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if proj_root not in sys.path:
    sys.path.insert(0, proj_root)

import argparse
import asyncio
import getpass
from typing import Optional


async def _create_or_update(username: str, password: str) -> Optional['User']:
    # imported lazily so DATABASE_URL from --db is seen by todo_app.db
    from todo_app.db import init_db, async_session
    from todo_app.models import User
    from todo_app.auth import pwd_context
    from sqlmodel import select
    await init_db()
    ph = pwd_context.hash(password)
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.username == username))
        user = q.first()
        if user:
            user.password_hash = ph
        else:
            user = User(username=username, password_hash=ph)
        sess.add(user)
        await sess.commit()
        await sess.refresh(user)
        return user


def parse_args(argv):
    p = argparse.ArgumentParser(description="Create or update a user in the todo database")
    p.add_argument("username", help="username to create/update")
    p.add_argument("password", nargs="?", help="password for the user (omit to prompt)")
    p.add_argument("--db", default=None, help="sqlite file or DATABASE_URL (default: $DATABASE_URL or ./todo_app.db)")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv if argv is not None else sys.argv[1:])
    if args.db:
        os.environ['DATABASE_URL'] = args.db if args.db.startswith('sqlite') else f"sqlite+aiosqlite:///{args.db}"
    password = args.password
    if not password:
        pw = getpass.getpass("Password: ")
        pw2 = getpass.getpass("Confirm password: ")
        if pw != pw2:
            print("Passwords do not match", file=sys.stderr)
            return 2
        if pw == "":
            print("Empty password not allowed", file=sys.stderr)
            return 2
        password = pw
    user = asyncio.run(_create_or_update(args.username, password))
    print(f"User '{user.username}' saved with id={user.id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
