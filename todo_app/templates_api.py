"""Todo templates: reusable blueprints with subtasks and tag links.

Templates are instantiated with POST /api/templates/{id}/use, which
creates a todo whose due date is either the caller's `custom_due_date` or
now plus the template's offset in days (canonical timezone).
"""
import logging
from datetime import timedelta
from fastapi import APIRouter, Request, HTTPException, Depends
from sqlmodel import select
from sqlalchemy import delete as sqlalchemy_delete

from .db import async_session
from .models import Template, TemplateTag, Tag, User
from .auth import require_login
from .todos_api import (
    read_json,
    bad_request,
    serialize_tag,
    get_owned_todo,
    insert_todo,
    load_subtasks,
    load_tags,
    owned_tag_ids,
    todo_detail,
)
from .utils import now_local, now_utc, ensure_utc, isoformat_local
from .validation import (
    UNSET,
    ValidationError,
    apply_patch,
    decode_template_subtasks,
    field,
    require_object,
    template_create_values,
    template_patch,
    validate_datetime,
    validate_id_list,
)

router = APIRouter(prefix='/api')
logger = logging.getLogger(__name__)


def serialize_template(t: Template, tags: list | None = None) -> dict:
    return {
        'id': t.id,
        'user_id': t.user_id,
        'name': t.name,
        'description': t.description,
        'category': t.category,
        'priority': t.priority,
        'recurrence_pattern': t.recurrence_pattern,
        'reminder_minutes': t.reminder_minutes,
        'due_date_offset_days': t.due_date_offset_days,
        'subtasks': decode_template_subtasks(t.subtasks_json),
        'tags': [serialize_tag(tag) for tag in (tags or [])],
        'created_at': isoformat_local(t.created_at),
        'updated_at': isoformat_local(t.updated_at),
    }


async def _get_owned_template(sess, template_id: int, user_id: int) -> Template:
    tpl = await sess.get(Template, template_id)
    if not tpl or tpl.user_id != user_id:
        raise HTTPException(status_code=404, detail="Template not found")
    return tpl


async def _template_tags(sess, template_ids: list[int]) -> dict[int, list[Tag]]:
    out: dict[int, list[Tag]] = {tid: [] for tid in template_ids}
    if not template_ids:
        return out
    res = await sess.exec(
        select(TemplateTag.template_id, Tag)
        .join(Tag, Tag.id == TemplateTag.tag_id)
        .where(TemplateTag.template_id.in_(template_ids))
        .order_by(Tag.name.asc())
    )
    for template_id, tag in res.all():
        out[template_id].append(tag)
    return out


async def _set_template_tags(sess, template_id: int, tag_ids: list[int]) -> None:
    await sess.execute(sqlalchemy_delete(TemplateTag).where(TemplateTag.template_id == template_id))
    for tag_id in tag_ids:
        sess.add(TemplateTag(template_id=template_id, tag_id=tag_id))


async def _template_detail(sess, tpl: Template) -> dict:
    tags = await _template_tags(sess, [tpl.id])
    return serialize_template(tpl, tags[tpl.id])


@router.get('/templates')
async def list_templates(request: Request, current_user: User = Depends(require_login)):
    category = request.query_params.get('category')
    async with async_session() as sess:
        q = select(Template).where(Template.user_id == current_user.id)
        if category:
            q = q.where(Template.category == category)
        res = await sess.exec(q.order_by(Template.created_at.desc(), Template.id.desc()))
        templates = res.all()
        tags = await _template_tags(sess, [t.id for t in templates])
    return {'templates': [serialize_template(t, tags[t.id]) for t in templates]}


@router.post('/templates', status_code=201)
async def create_template(request: Request, current_user: User = Depends(require_login)):
    payload = await read_json(request)
    try:
        values = template_create_values(payload)
        tag_ids = validate_id_list(payload.get('tag_ids'))
        async with async_session() as sess:
            tag_ids = await owned_tag_ids(sess, current_user.id, tag_ids)
            tpl = Template(user_id=current_user.id, **values)
            sess.add(tpl)
            await sess.flush()
            await _set_template_tags(sess, tpl.id, tag_ids)
            await sess.commit()
            await sess.refresh(tpl)
            return {'template': await _template_detail(sess, tpl)}
    except ValidationError as e:
        raise bad_request(e)


@router.get('/templates/{template_id}')
async def get_template(template_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        tpl = await _get_owned_template(sess, template_id, current_user.id)
        return {'template': await _template_detail(sess, tpl)}


@router.put('/templates/{template_id}')
@router.patch('/templates/{template_id}')
async def update_template(template_id: int, request: Request, current_user: User = Depends(require_login)):
    """Partial update; `tag_ids`, when present, replaces the tag links and null clears them."""
    payload = await read_json(request)
    try:
        patch = template_patch(payload)
        tag_ids = field(payload, 'tag_ids')
        async with async_session() as sess:
            tpl = await _get_owned_template(sess, template_id, current_user.id)
            changed = apply_patch(tpl, patch)
            if tag_ids is not UNSET:
                tag_ids = await owned_tag_ids(sess, current_user.id, validate_id_list(tag_ids))
                await _set_template_tags(sess, tpl.id, tag_ids)
                changed = True
            if changed:
                tpl.updated_at = now_utc()
                sess.add(tpl)
                await sess.commit()
                await sess.refresh(tpl)
            return {'template': await _template_detail(sess, tpl)}
    except ValidationError as e:
        raise bad_request(e)


@router.delete('/templates/{template_id}', status_code=204)
async def delete_template(template_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        tpl = await _get_owned_template(sess, template_id, current_user.id)
        await sess.execute(sqlalchemy_delete(TemplateTag).where(TemplateTag.template_id == tpl.id))
        await sess.delete(tpl)
        await sess.commit()
    return None


@router.post('/templates/{template_id}/use', status_code=201)
async def use_template(template_id: int, request: Request, current_user: User = Depends(require_login)):
    """Create a todo (with subtasks and tags) from a template.

    A template without any due date source yields a todo with no due date;
    its recurrence pattern and reminder are dropped since both need one.
    """
    payload = await read_json(request, optional=True)
    try:
        custom_due = validate_datetime(require_object(payload).get('custom_due_date') or None, 'custom_due_date')
    except ValidationError as e:
        raise bad_request(e)
    async with async_session() as sess:
        tpl = await _get_owned_template(sess, template_id, current_user.id)
        if custom_due is not None:
            due = custom_due
        elif tpl.due_date_offset_days is not None:
            due = ensure_utc(now_local() + timedelta(days=tpl.due_date_offset_days))
        else:
            due = None
        values = {
            'title': tpl.name,
            'priority': tpl.priority,
            'due_date': due,
            'recurrence_pattern': tpl.recurrence_pattern if due is not None else None,
            'reminder_minutes': tpl.reminder_minutes if due is not None else None,
        }
        tags = await _template_tags(sess, [tpl.id])
        todo = await insert_todo(
            sess,
            current_user.id,
            values,
            tag_ids=[t.id for t in tags[tpl.id]],
            subtasks=decode_template_subtasks(tpl.subtasks_json),
        )
        await sess.commit()
        await sess.refresh(todo)
        logger.info('created todo %s from template %s', todo.id, tpl.id)
        return {'todo': await todo_detail(sess, todo), 'message': f"Todo created from template '{tpl.name}'"}


@router.post('/todos/{todo_id}/template', status_code=201)
async def save_todo_as_template(todo_id: int, request: Request, current_user: User = Depends(require_login)):
    """Snapshot a todo (subtasks and tags included) as a new template.

    Optional JSON fields: name (defaults to the todo title), description,
    category, due_date_offset_days.
    """
    payload = await read_json(request, optional=True)
    try:
        payload = require_object(payload)
    except ValidationError as e:
        raise bad_request(e)
    async with async_session() as sess:
        todo = await get_owned_todo(sess, todo_id, current_user.id)
        subtasks = (await load_subtasks(sess, [todo.id]))[todo.id]
        tags = (await load_tags(sess, [todo.id]))[todo.id]
        base = {
            'name': todo.title[:200],
            'priority': todo.priority,
            'recurrence_pattern': todo.recurrence_pattern,
            'reminder_minutes': todo.reminder_minutes,
            'subtasks': [{'title': s.title[:200], 'position': s.position} for s in subtasks],
        }
        base.update({k: payload[k] for k in ('name', 'description', 'category', 'due_date_offset_days') if k in payload})
        try:
            values = template_create_values(base)
        except ValidationError as e:
            raise bad_request(e)
        tpl = Template(user_id=current_user.id, **values)
        sess.add(tpl)
        await sess.flush()
        await _set_template_tags(sess, tpl.id, [t.id for t in tags])
        await sess.commit()
        await sess.refresh(tpl)
        return {'template': await _template_detail(sess, tpl)}
