#!/usr/bin/env python3
"""List users with their todo counts.

Usage:
  DATABASE_URL="sqlite+aiosqlite:///./todo_app.db" python scripts/list_users.py
"""
import os
import sys
import asyncio
proj_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if proj_root not in sys.path:
    sys.path.insert(0, proj_root)

from sqlmodel import select
from sqlalchemy import func


async def main():
    # import here so we pick up DATABASE_URL if set
    from todo_app.db import init_db, async_session
    from todo_app.models import User, Todo

    print(f"Using DATABASE_URL={os.getenv('DATABASE_URL') or '(default)'}")
    await init_db()
    async with async_session() as sess:
        q = await sess.exec(
            select(User, func.count(Todo.id))
            .join(Todo, Todo.user_id == User.id, isouter=True)
            .group_by(User.id)
            .order_by(User.username)
        )
        rows = q.all()
        if not rows:
            print("No users found in DB.")
            return
        print(f"Found {len(rows)} users:\n")
        for u, count in rows:
            print(f"{u.id:>5}  {u.username:<24} todos={count}  created={u.created_at}")


if __name__ == '__main__':
    asyncio.run(main())
