from typing import Optional
import logging
from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse
from sqlmodel import select
from sqlalchemy import delete as sqlalchemy_delete, func

from .db import async_session
from .models import Todo, Subtask, Tag, TodoTag, User
from .auth import require_login
from .recurrence import next_due_date, RecurrenceError
from .filters import parse_filter, filter_todos
from .utils import now_utc, ensure_utc, to_local, isoformat_local
from .validation import (
    UNSET,
    ValidationError,
    apply_patch,
    check_due_dependencies,
    subtask_create_values,
    subtask_patch,
    todo_create_values,
    todo_patch,
    validate_id_list,
    require_object,
)

router = APIRouter(prefix='/api')
logger = logging.getLogger(__name__)


def bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


async def read_json(request: Request, optional: bool = False):
    if optional and not (await request.body()).strip():
        return {}
    try:
        return await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="invalid JSON")


# --- serialization ---

def serialize_tag(tag: Tag) -> dict:
    return {'id': tag.id, 'name': tag.name, 'color': tag.color}


def serialize_subtask(s: Subtask) -> dict:
    return {
        'id': s.id,
        'todo_id': s.todo_id,
        'title': s.title,
        'completed': bool(s.completed),
        'position': s.position,
        'created_at': isoformat_local(s.created_at),
        'updated_at': isoformat_local(s.updated_at),
    }


def subtask_progress(subtasks: list[Subtask]) -> dict:
    total = len(subtasks)
    done = sum(1 for s in subtasks if s.completed)
    return {'total': total, 'completed': done, 'percentage': round(done * 100 / total) if total else 0}


def serialize_todo(todo: Todo, subtasks: Optional[list] = None, tags: Optional[list] = None) -> dict:
    subtasks = subtasks or []
    return {
        'id': todo.id,
        'user_id': todo.user_id,
        'title': todo.title,
        'priority': todo.priority,
        'due_date': isoformat_local(todo.due_date),
        'recurrence_pattern': todo.recurrence_pattern,
        'reminder_minutes': todo.reminder_minutes,
        'last_notification_sent': isoformat_local(todo.last_notification_sent),
        'completed_at': isoformat_local(todo.completed_at),
        'completed': todo.completed_at is not None,
        'created_at': isoformat_local(todo.created_at),
        'updated_at': isoformat_local(todo.updated_at),
        'subtasks': [serialize_subtask(s) for s in subtasks],
        'progress': subtask_progress(subtasks),
        'tags': [serialize_tag(t) for t in (tags or [])],
    }


# --- data access ---

async def get_owned_todo(sess, todo_id: int, user_id: int) -> Todo:
    """Fetch a todo owned by user_id; other users' rows are reported as missing."""
    todo = await sess.get(Todo, todo_id)
    if not todo or todo.user_id != user_id:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo


async def load_subtasks(sess, todo_ids: list[int]) -> dict[int, list[Subtask]]:
    out: dict[int, list[Subtask]] = {tid: [] for tid in todo_ids}
    if not todo_ids:
        return out
    res = await sess.exec(
        select(Subtask).where(Subtask.todo_id.in_(todo_ids)).order_by(Subtask.position.asc(), Subtask.id.asc())
    )
    for s in res.all():
        out[s.todo_id].append(s)
    return out


async def load_tags(sess, todo_ids: list[int]) -> dict[int, list[Tag]]:
    out: dict[int, list[Tag]] = {tid: [] for tid in todo_ids}
    if not todo_ids:
        return out
    res = await sess.exec(
        select(TodoTag.todo_id, Tag)
        .join(Tag, Tag.id == TodoTag.tag_id)
        .where(TodoTag.todo_id.in_(todo_ids))
        .order_by(Tag.name.asc())
    )
    for todo_id, tag in res.all():
        out[todo_id].append(tag)
    return out


async def todo_detail(sess, todo: Todo) -> dict:
    subtasks = await load_subtasks(sess, [todo.id])
    tags = await load_tags(sess, [todo.id])
    return serialize_todo(todo, subtasks[todo.id], tags[todo.id])


async def owned_tag_ids(sess, user_id: int, tag_ids: list[int]) -> list[int]:
    """Validate that every id names a tag of user_id."""
    if not tag_ids:
        return []
    res = await sess.exec(select(Tag.id).where(Tag.user_id == user_id).where(Tag.id.in_(tag_ids)))
    found = set(res.all())
    missing = [t for t in tag_ids if t not in found]
    if missing:
        raise ValidationError(f"unknown tag ids: {missing}")
    return tag_ids


async def set_todo_tags(sess, todo_id: int, tag_ids: list[int]) -> None:
    await sess.execute(sqlalchemy_delete(TodoTag).where(TodoTag.todo_id == todo_id))
    for tag_id in tag_ids:
        sess.add(TodoTag(todo_id=todo_id, tag_id=tag_id))


async def next_subtask_position(sess, todo_id: int) -> int:
    res = await sess.exec(select(func.max(Subtask.position)).where(Subtask.todo_id == todo_id))
    current = res.first()
    return 0 if current is None else int(current) + 1


async def insert_todo(sess, user_id: int, values: dict, tag_ids=(), subtasks=()) -> Todo:
    """Add a todo plus its subtasks and tag links; caller commits."""
    todo = Todo(user_id=user_id, **values)
    sess.add(todo)
    await sess.flush()
    for item in subtasks:
        sess.add(Subtask(todo_id=todo.id, title=item['title'], position=item['position']))
    await set_todo_tags(sess, todo.id, list(tag_ids))
    return todo


async def apply_completion(sess, todo: Todo, completed_at) -> Optional[Todo]:
    """Set or clear completion; return the follow-up todo when a recurring one rolls over.

    Only an incomplete -> complete transition on a todo with both a
    recurrence pattern and a due date creates the next occurrence. The new
    todo carries the title, recurrence pattern, priority, reminder and tags.
    """
    was_completed = todo.completed_at is not None
    todo.completed_at = completed_at
    if completed_at is None or was_completed:
        return None
    if not todo.recurrence_pattern or todo.due_date is None:
        return None
    try:
        due = next_due_date(to_local(todo.due_date), todo.recurrence_pattern)
    except RecurrenceError as e:
        raise bad_request(e)
    tags = await load_tags(sess, [todo.id])
    nxt = await insert_todo(
        sess,
        todo.user_id,
        {
            'title': todo.title,
            'priority': todo.priority,
            'due_date': ensure_utc(due),
            'recurrence_pattern': todo.recurrence_pattern,
            'reminder_minutes': todo.reminder_minutes,
        },
        tag_ids=[t.id for t in tags[todo.id]],
    )
    logger.info('recurring todo %s completed; next occurrence todo %s due %s', todo.id, nxt.id, due.isoformat())
    return nxt


# --- todos ---

@router.get('/todos', response_class=JSONResponse)
async def list_todos(request: Request, current_user: User = Depends(require_login)):
    """List the user's todos, newest first.

    Optional query parameters: q, status, priority (repeatable),
    tag_id (repeatable), due.
    """
    params = request.query_params
    try:
        tag_ids = [int(v) for v in params.getlist('tag_id')]
    except ValueError:
        raise HTTPException(status_code=400, detail="tag_id must be an integer")
    try:
        flt = parse_filter(
            q=params.get('q'),
            status=params.get('status'),
            priorities=params.getlist('priority'),
            tag_ids=tag_ids,
            due=params.get('due'),
        )
    except ValidationError as e:
        raise bad_request(e)
    async with async_session() as sess:
        res = await sess.exec(
            select(Todo).where(Todo.user_id == current_user.id).order_by(Todo.created_at.desc(), Todo.id.desc())
        )
        todos = res.all()
        ids = [t.id for t in todos]
        tags = await load_tags(sess, ids)
        todos = filter_todos(todos, tags, flt, now_utc())
        subtasks = await load_subtasks(sess, [t.id for t in todos])
    return [serialize_todo(t, subtasks[t.id], tags[t.id]) for t in todos]


@router.post('/todos', status_code=201)
async def create_todo(request: Request, current_user: User = Depends(require_login)):
    """Create a todo. JSON fields: title (required), priority, due_date,
    recurrence_pattern, reminder_minutes, tag_ids."""
    payload = await read_json(request)
    try:
        values = todo_create_values(payload)
        tag_ids = validate_id_list(payload.get('tag_ids'))
        async with async_session() as sess:
            tag_ids = await owned_tag_ids(sess, current_user.id, tag_ids)
            todo = await insert_todo(sess, current_user.id, values, tag_ids=tag_ids)
            await sess.commit()
            await sess.refresh(todo)
            return await todo_detail(sess, todo)
    except ValidationError as e:
        raise bad_request(e)


@router.get('/todos/{todo_id}')
async def get_todo(todo_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        todo = await get_owned_todo(sess, todo_id, current_user.id)
        return await todo_detail(sess, todo)


async def _update_todo_internal(todo_id: int, patch: dict, current_user: User) -> dict:
    """Apply a validated patch. Completion changes go through apply_completion."""
    completed_at = patch.pop('completed_at', UNSET)
    async with async_session() as sess:
        todo = await get_owned_todo(sess, todo_id, current_user.id)
        state = {
            'due_date': patch.get('due_date', todo.due_date),
            'recurrence_pattern': patch.get('recurrence_pattern', todo.recurrence_pattern),
            'reminder_minutes': patch.get('reminder_minutes', todo.reminder_minutes),
        }
        check_due_dependencies(state)
        changed = apply_patch(todo, patch)
        next_todo = None
        if completed_at is not UNSET and (completed_at is None) != (todo.completed_at is None):
            next_todo = await apply_completion(sess, todo, completed_at)
            changed = True
        if changed:
            todo.updated_at = now_utc()
            sess.add(todo)
            await sess.commit()
            await sess.refresh(todo)
        out = await todo_detail(sess, todo)
        out['next_todo'] = await todo_detail(sess, next_todo) if next_todo is not None else None
        return out


@router.put('/todos/{todo_id}')
@router.patch('/todos/{todo_id}')
async def update_todo(todo_id: int, request: Request, current_user: User = Depends(require_login)):
    """Partial update: only keys present in the JSON body change; null clears.

    Accepts title, priority, due_date, recurrence_pattern, reminder_minutes,
    completed (bool) or completed_at (timestamp or null).
    """
    payload = await read_json(request)
    try:
        return await _update_todo_internal(todo_id, todo_patch(payload), current_user)
    except ValidationError as e:
        raise bad_request(e)


@router.post('/todos/{todo_id}/toggle')
async def toggle_todo(todo_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        todo = await get_owned_todo(sess, todo_id, current_user.id)
        completed_at = None if todo.completed_at is not None else now_utc()
    return await _update_todo_internal(todo_id, {'completed_at': completed_at}, current_user)


@router.delete('/todos/{todo_id}')
async def delete_todo(todo_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        todo = await get_owned_todo(sess, todo_id, current_user.id)
        await sess.execute(sqlalchemy_delete(Subtask).where(Subtask.todo_id == todo.id))
        await sess.execute(sqlalchemy_delete(TodoTag).where(TodoTag.todo_id == todo.id))
        await sess.delete(todo)
        await sess.commit()
    logger.info('deleted todo %s for user %s', todo_id, current_user.id)
    return {'message': 'Todo deleted successfully', 'deleted_id': todo_id}


@router.put('/todos/{todo_id}/tags')
async def replace_todo_tags(todo_id: int, request: Request, current_user: User = Depends(require_login)):
    payload = await read_json(request)
    try:
        tag_ids = validate_id_list(require_object(payload).get('tag_ids'))
        async with async_session() as sess:
            todo = await get_owned_todo(sess, todo_id, current_user.id)
            tag_ids = await owned_tag_ids(sess, current_user.id, tag_ids)
            await set_todo_tags(sess, todo.id, tag_ids)
            todo.updated_at = now_utc()
            sess.add(todo)
            await sess.commit()
            await sess.refresh(todo)
            return await todo_detail(sess, todo)
    except ValidationError as e:
        raise bad_request(e)


# --- subtasks ---

@router.get('/todos/{todo_id}/subtasks')
async def list_subtasks(todo_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        await get_owned_todo(sess, todo_id, current_user.id)
        subtasks = (await load_subtasks(sess, [todo_id]))[todo_id]
    return {'subtasks': [serialize_subtask(s) for s in subtasks], 'progress': subtask_progress(subtasks)}


@router.post('/todos/{todo_id}/subtasks', status_code=201)
async def create_subtask(todo_id: int, request: Request, current_user: User = Depends(require_login)):
    payload = await read_json(request)
    try:
        values = subtask_create_values(payload)
    except ValidationError as e:
        raise bad_request(e)
    async with async_session() as sess:
        await get_owned_todo(sess, todo_id, current_user.id)
        if 'position' not in values:
            values['position'] = await next_subtask_position(sess, todo_id)
        subtask = Subtask(todo_id=todo_id, **values)
        sess.add(subtask)
        await sess.commit()
        await sess.refresh(subtask)
    return {'subtask': serialize_subtask(subtask)}


async def _get_owned_subtask(sess, todo_id: int, subtask_id: int, user_id: int) -> Subtask:
    await get_owned_todo(sess, todo_id, user_id)
    subtask = await sess.get(Subtask, subtask_id)
    if not subtask or subtask.todo_id != todo_id:
        raise HTTPException(status_code=404, detail="Subtask not found")
    return subtask


@router.put('/todos/{todo_id}/subtasks/{subtask_id}')
@router.patch('/todos/{todo_id}/subtasks/{subtask_id}')
async def update_subtask(todo_id: int, subtask_id: int, request: Request, current_user: User = Depends(require_login)):
    payload = await read_json(request)
    try:
        patch = subtask_patch(payload)
    except ValidationError as e:
        raise bad_request(e)
    async with async_session() as sess:
        subtask = await _get_owned_subtask(sess, todo_id, subtask_id, current_user.id)
        if apply_patch(subtask, patch):
            subtask.updated_at = now_utc()
            sess.add(subtask)
            await sess.commit()
            await sess.refresh(subtask)
    return {'subtask': serialize_subtask(subtask)}


@router.delete('/todos/{todo_id}/subtasks/{subtask_id}')
async def delete_subtask(todo_id: int, subtask_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        subtask = await _get_owned_subtask(sess, todo_id, subtask_id, current_user.id)
        await sess.delete(subtask)
        await sess.commit()
    return {'success': True, 'deleted_id': subtask_id}
