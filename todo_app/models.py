from typing import Optional
from datetime import datetime
from .utils import now_utc
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint


class User(SQLModel, table=True):
    """Application user; password stored as a passlib hash."""
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, sa_column_kwargs={"unique": True})
    password_hash: str
    created_at: datetime | None = Field(default_factory=now_utc)


class Session(SQLModel, table=True):
    """Server-side session store for browser clients.

    session_token is a secure random string stored in an HttpOnly cookie and
    mapped to a user_id in the DB. Expired rows are removed lazily on lookup.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    session_token: str = Field(sa_column_kwargs={"unique": True, "index": True})
    user_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime | None = Field(default_factory=now_utc)
    expires_at: Optional[datetime] = None


class Todo(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    title: str
    # 'high' | 'medium' | 'low'; null means no priority
    priority: Optional[str] = Field(default=None, index=True)
    # All datetimes are stored as UTC; see utils.ensure_utc
    due_date: Optional[datetime] = Field(default=None, index=True)
    # 'daily' | 'weekly' | 'monthly' | 'yearly'; requires due_date
    recurrence_pattern: Optional[str] = None
    # minutes before due_date at which a reminder becomes eligible
    reminder_minutes: Optional[int] = None
    last_notification_sent: Optional[datetime] = None
    # null = incomplete
    completed_at: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime | None = Field(default_factory=now_utc)
    updated_at: datetime | None = Field(default_factory=now_utc)


class Subtask(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    todo_id: int = Field(foreign_key="todo.id", index=True, ondelete="CASCADE")
    title: str
    completed: bool = Field(default=False)
    # ordering key; unique enough to sort, not required to be contiguous
    position: int = Field(default=0, index=True)
    created_at: datetime | None = Field(default_factory=now_utc)
    updated_at: datetime | None = Field(default_factory=now_utc)


class Tag(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    name: str
    color: str = Field(default="#3B82F6")
    created_at: datetime | None = Field(default_factory=now_utc)

    __table_args__ = (UniqueConstraint('user_id', 'name', name='uq_tag_user_name'),)


class TodoTag(SQLModel, table=True):
    todo_id: Optional[int] = Field(default=None, foreign_key="todo.id", primary_key=True, ondelete="CASCADE")
    tag_id: Optional[int] = Field(default=None, foreign_key="tag.id", primary_key=True, ondelete="CASCADE")


class Template(SQLModel, table=True):
    """Reusable blueprint for creating a todo with subtasks and tags."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    name: str
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, index=True)
    priority: Optional[str] = None
    recurrence_pattern: Optional[str] = None
    reminder_minutes: Optional[int] = None
    # days from instantiation to the created todo's due date
    due_date_offset_days: Optional[int] = None
    # JSON-encoded list of {"title": str, "position": int}
    subtasks_json: Optional[str] = None
    created_at: datetime | None = Field(default_factory=now_utc)
    updated_at: datetime | None = Field(default_factory=now_utc)


class TemplateTag(SQLModel, table=True):
    template_id: Optional[int] = Field(default=None, foreign_key="template.id", primary_key=True, ondelete="CASCADE")
    tag_id: Optional[int] = Field(default=None, foreign_key="tag.id", primary_key=True, ondelete="CASCADE")


class SchemaVersion(SQLModel, table=True):
    """One row per applied migration (see db.MIGRATIONS)."""
    version: int = Field(primary_key=True)
    description: str
    applied_at: datetime | None = Field(default_factory=now_utc)
