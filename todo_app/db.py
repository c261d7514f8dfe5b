from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy import event, text
from sqlalchemy.pool import NullPool

import os
import logging

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./todo_app.db")


def _is_sqlite(url: str | None) -> bool:
    return bool(url) and url.startswith('sqlite')


engine = create_async_engine(DATABASE_URL, echo=False, future=True, poolclass=NullPool)


if _is_sqlite(DATABASE_URL):
    @event.listens_for(engine.sync_engine, 'connect')
    def _enable_sqlite_foreign_keys(dbapi_con, con_record):
        # SQLite leaves FK enforcement (and ON DELETE CASCADE) off per connection
        cur = dbapi_con.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# --- migrations ---
#
# Each entry runs exactly once per database, in version order, and is
# recorded in the schemaversion table. Add new steps at the end; never edit
# or reorder an applied one.

async def _m0001_initial_schema(conn):
    from . import models  # noqa: F401  (register tables on SQLModel.metadata)
    await conn.run_sync(SQLModel.metadata.create_all)


async def _m0002_query_indexes(conn):
    await conn.execute(text("CREATE INDEX IF NOT EXISTS ix_todo_user_completed ON todo(user_id, completed_at)"))
    await conn.execute(text("CREATE INDEX IF NOT EXISTS ix_todo_user_due ON todo(user_id, due_date)"))
    await conn.execute(text("CREATE INDEX IF NOT EXISTS ix_subtask_todo_position ON subtask(todo_id, position)"))
    await conn.execute(text("CREATE INDEX IF NOT EXISTS ix_template_user_category ON template(user_id, category)"))


MIGRATIONS = [
    (1, 'initial schema', _m0001_initial_schema),
    (2, 'query indexes', _m0002_query_indexes),
]


async def _applied_versions(conn) -> set[int]:
    await conn.execute(text(
        "CREATE TABLE IF NOT EXISTS schemaversion ("
        " version INTEGER PRIMARY KEY,"
        " description VARCHAR NOT NULL,"
        " applied_at DATETIME)"
    ))
    res = await conn.execute(text("SELECT version FROM schemaversion"))
    return {row[0] for row in res.fetchall()}


async def init_db() -> list[int]:
    """Apply pending migrations; return the versions applied by this call."""
    from .utils import now_utc
    applied = []
    async with engine.begin() as conn:
        done = await _applied_versions(conn)
        for version, description, step in MIGRATIONS:
            if version in done:
                continue
            logger.info('applying migration %s: %s', version, description)
            await step(conn)
            await conn.execute(
                text("INSERT INTO schemaversion (version, description, applied_at) VALUES (:v, :d, :a)"),
                {'v': version, 'd': description, 'a': now_utc().replace(tzinfo=None)},
            )
            applied.append(version)
    return applied


async def schema_version() -> int:
    async with engine.connect() as conn:
        res = await conn.execute(text("SELECT MAX(version) FROM schemaversion"))
        v = res.scalar()
    return int(v or 0)
