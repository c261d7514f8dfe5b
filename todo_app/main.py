from fastapi import FastAPI, HTTPException, Depends
from fastapi import Request, Form
from fastapi.responses import HTMLResponse, RedirectResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from contextlib import asynccontextmanager
from typing import Optional
import logging
import os
import sys
import time

from .db import init_db, schema_version
from .models import User
from .auth import (
    authenticate_user,
    create_access_token,
    create_session_for_user,
    delete_session,
    ensure_user,
    get_current_user,
)
from . import config
from . import todos_api, tags_api, templates_api, notifications_api

logger = logging.getLogger(__name__)
# Attach a console handler to the package logger when the embedding server
# has not configured one.
_pkg_logger = logging.getLogger('todo_app')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

# Cookie secure flag: default to False for test/dev (HTTP). In production set
# COOKIE_SECURE=1 or true in the environment so cookies are marked Secure.
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

TEMPLATES = Jinja2Templates(directory=os.path.join(os.path.dirname(__file__), 'templates'))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # refuse to start with the test fallback secret
    from .auth import SECRET_KEY as _SECRET_KEY
    if not _SECRET_KEY or _SECRET_KEY == "CHANGE_ME_IN_ENV_FOR_TESTS":
        raise RuntimeError("SECRET_KEY not set or insecure fallback in use; set the SECRET_KEY environment variable before starting the server")

    applied = await init_db()
    from . import db as _dbmod
    logger.info('starting server using DATABASE_URL=%s (schema version %s, applied now: %s)',
                _dbmod.DATABASE_URL, await schema_version(), applied or 'none')
    if config.DEV_MODE:
        await ensure_user(config.DEV_USERNAME)
        logger.info('DEV_MODE enabled: anonymous requests act as %s', config.DEV_USERNAME)
    yield


app = FastAPI(lifespan=lifespan)
app.include_router(todos_api.router)
app.include_router(tags_api.router)
app.include_router(templates_api.router)
app.include_router(notifications_api.router)


@app.middleware('http')
async def timing_middleware(request: Request, call_next):
    start = time.perf_counter()
    resp = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000.0
    logger.debug('timing %s %s %s %.1fms', request.method, request.url.path, request.url.query, duration_ms)
    return resp


@app.middleware("http")
async def no_cache_api(request: Request, call_next):
    """Keep browsers from serving stale API responses after optimistic updates."""
    resp = await call_next(request)
    if request.url.path.startswith('/api/'):
        resp.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
        resp.headers['Pragma'] = 'no-cache'
    return resp


class TokenRequest(BaseModel):
    username: str
    password: str


@app.post('/auth/token')
async def login_for_access_token(req: TokenRequest):
    user = await authenticate_user(req.username, req.password)
    if not user:
        logger.info('token request rejected for %s', req.username)
        raise HTTPException(status_code=401, detail='Incorrect username or password')
    access_token = create_access_token(data={'sub': user.username})
    return {'access_token': access_token, 'token_type': 'bearer'}


@app.get('/', response_class=HTMLResponse)
async def index(request: Request, current_user: Optional[User] = Depends(get_current_user)):
    if not current_user:
        return RedirectResponse(url='/login', status_code=303)
    return TEMPLATES.TemplateResponse(request, 'index.html', {
        "request": request,
        "user": current_user,
        "poll_seconds": config.NOTIFICATION_POLL_SECONDS,
        "timezone": config.DEFAULT_TIMEZONE,
    })


@app.get('/login', response_class=HTMLResponse)
async def login_get(request: Request):
    return TEMPLATES.TemplateResponse(request, 'login.html', {"request": request})


@app.post('/login')
async def login_post(request: Request, username: str = Form(...), password: str = Form(...)):
    """Form login: create a server-side session and set it as an HttpOnly cookie.

    Clients sending `Accept: application/json` get the tokens in the body
    instead of a redirect.
    """
    user = await authenticate_user(username, password)
    wants_json = 'application/json' in (request.headers.get('Accept') or '').lower()
    if not user:
        logger.info('login failed for %s', username)
        if wants_json:
            return JSONResponse({'ok': False, 'error': 'invalid_credentials'}, status_code=401)
        return TEMPLATES.TemplateResponse(request, 'login.html', {"request": request, "error": "Invalid credentials"}, status_code=401)
    session_token = await create_session_for_user(user)
    if wants_json:
        resp = JSONResponse({'ok': True, 'session_token': session_token, 'access_token': create_access_token({'sub': user.username})})
    else:
        resp = RedirectResponse(url='/', status_code=303)
    resp.set_cookie('session_token', session_token, httponly=True, samesite='lax', secure=COOKIE_SECURE)
    return resp


@app.post('/logout')
async def logout(request: Request):
    session_token = request.cookies.get('session_token')
    if session_token:
        await delete_session(session_token)
    if 'application/json' in (request.headers.get('Accept') or '').lower():
        resp = JSONResponse({'ok': True, 'logged_out': True})
    else:
        resp = RedirectResponse(url='/login', status_code=303)
    # same attributes as when set so browsers reliably remove it
    resp.delete_cookie('session_token', path='/', samesite='lax', secure=COOKIE_SECURE)
    return resp
