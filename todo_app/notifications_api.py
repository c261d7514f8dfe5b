import logging
from fastapi import APIRouter, Depends
from sqlmodel import select

from .db import async_session
from .models import Todo, User
from .auth import require_login
from .reminders import todo_needs_notification
from .todos_api import load_subtasks, load_tags, serialize_todo
from .utils import now_utc

router = APIRouter(prefix='/api')
logger = logging.getLogger(__name__)


@router.get('/notifications/check')
async def check_notifications(current_user: User = Depends(require_login)):
    """Return todos whose reminder is due and stamp them as notified.

    Polled by the browser page; stamping `last_notification_sent` with the
    poll time starts the cooldown so the next poll does not repeat them.
    """
    now = now_utc()
    async with async_session() as sess:
        res = await sess.exec(
            select(Todo)
            .where(Todo.user_id == current_user.id)
            .where(Todo.completed_at.is_(None))
            .where(Todo.due_date.is_not(None))
            .where(Todo.reminder_minutes.is_not(None))
            .order_by(Todo.due_date.asc(), Todo.id.asc())
        )
        due = [t for t in res.all() if todo_needs_notification(t, now)]
        for todo in due:
            todo.last_notification_sent = now
            sess.add(todo)
        if due:
            await sess.commit()
            logger.info('reminders fired for user %s: %s', current_user.id, [t.id for t in due])
        ids = [t.id for t in due]
        subtasks = await load_subtasks(sess, ids)
        tags = await load_tags(sess, ids)
    return {'todos': [serialize_todo(t, subtasks[t.id], tags[t.id]) for t in due], 'count': len(due)}
