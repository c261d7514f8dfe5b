import logging
from fastapi import APIRouter, Request, HTTPException, Depends
from sqlmodel import select
from sqlalchemy import delete as sqlalchemy_delete
from sqlalchemy.exc import IntegrityError

from .db import async_session
from .models import Tag, TodoTag, TemplateTag, User
from .auth import require_login
from .todos_api import read_json, bad_request, serialize_tag
from .validation import ValidationError, tag_create_values, tag_patch, apply_patch

router = APIRouter(prefix='/api')
logger = logging.getLogger(__name__)


async def _get_owned_tag(sess, tag_id: int, user_id: int) -> Tag:
    tag = await sess.get(Tag, tag_id)
    if not tag or tag.user_id != user_id:
        raise HTTPException(status_code=404, detail="Tag not found")
    return tag


async def _name_taken(sess, user_id: int, name: str, exclude_id: int | None = None) -> bool:
    q = select(Tag.id).where(Tag.user_id == user_id).where(Tag.name == name)
    if exclude_id is not None:
        q = q.where(Tag.id != exclude_id)
    res = await sess.exec(q)
    return res.first() is not None


@router.get('/tags')
async def list_tags(current_user: User = Depends(require_login)):
    async with async_session() as sess:
        res = await sess.exec(select(Tag).where(Tag.user_id == current_user.id).order_by(Tag.name.asc()))
        return {'tags': [serialize_tag(t) for t in res.all()]}


@router.post('/tags', status_code=201)
async def create_tag(request: Request, current_user: User = Depends(require_login)):
    payload = await read_json(request)
    try:
        values = tag_create_values(payload)
    except ValidationError as e:
        raise bad_request(e)
    async with async_session() as sess:
        if await _name_taken(sess, current_user.id, values['name']):
            raise HTTPException(status_code=400, detail="Tag name already exists")
        tag = Tag(user_id=current_user.id, **values)
        sess.add(tag)
        try:
            await sess.commit()
        except IntegrityError:
            # concurrent insert of the same name
            await sess.rollback()
            raise HTTPException(status_code=400, detail="Tag name already exists")
        await sess.refresh(tag)
    return {'tag': serialize_tag(tag)}


@router.put('/tags/{tag_id}')
@router.patch('/tags/{tag_id}')
async def update_tag(tag_id: int, request: Request, current_user: User = Depends(require_login)):
    payload = await read_json(request)
    try:
        patch = tag_patch(payload)
    except ValidationError as e:
        raise bad_request(e)
    async with async_session() as sess:
        tag = await _get_owned_tag(sess, tag_id, current_user.id)
        if 'name' in patch and await _name_taken(sess, current_user.id, patch['name'], exclude_id=tag.id):
            raise HTTPException(status_code=400, detail="Tag name already exists")
        if apply_patch(tag, patch):
            sess.add(tag)
            await sess.commit()
            await sess.refresh(tag)
    return {'tag': serialize_tag(tag)}


@router.delete('/tags/{tag_id}')
async def delete_tag(tag_id: int, current_user: User = Depends(require_login)):
    """Delete a tag and detach it from every todo and template."""
    async with async_session() as sess:
        tag = await _get_owned_tag(sess, tag_id, current_user.id)
        await sess.execute(sqlalchemy_delete(TodoTag).where(TodoTag.tag_id == tag.id))
        await sess.execute(sqlalchemy_delete(TemplateTag).where(TemplateTag.tag_id == tag.id))
        await sess.delete(tag)
        await sess.commit()
    logger.info('deleted tag %s for user %s', tag_id, current_user.id)
    return {'success': True, 'deleted_id': tag_id}
