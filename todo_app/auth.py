import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import select
from sqlalchemy import delete as sqlalchemy_delete
from passlib.context import CryptContext
from jose import JWTError, jwt
from pydantic import BaseModel
from .models import User, Session
from .db import async_session
from .utils import ensure_utc
from . import config
import secrets
import logging

logger = logging.getLogger(__name__)

# SECRET_KEY should be set in the environment in production. We fall back to a
# predictable value for local testing; main.lifespan refuses to start with it.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_ENV_FOR_TESTS")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24
SESSION_EXPIRE_DAYS = 7

# prefer a pure-Python, widely-available scheme for tests and portability;
# keep bcrypt as a fallback if available.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


class TokenData(BaseModel):
    username: Optional[str] = None


async def get_user_by_username(username: str) -> Optional[User]:
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.username == username))
        return q.first()


async def create_user(username: str, password: str) -> User:
    async with async_session() as sess:
        user = User(username=username, password_hash=pwd_context.hash(password))
        sess.add(user)
        await sess.commit()
        await sess.refresh(user)
    logger.info('created user %s', username)
    return user


async def ensure_user(username: str, password: Optional[str] = None) -> User:
    """Return the named user, creating it (random password if none) when missing."""
    user = await get_user_by_username(username)
    if user:
        return user
    return await create_user(username, password or secrets.token_urlsafe(16))


async def create_session_for_user(user: User, token: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
    """Create a server-side session and return the session token.

    If token is provided it will be used; otherwise a secure random token
    is generated.
    """
    sess_token = token or secrets.token_urlsafe(32)
    if expires_delta is None:
        expires_delta = timedelta(days=SESSION_EXPIRE_DAYS)
    expires_at = datetime.now(timezone.utc) + expires_delta
    async with async_session() as s:
        s.add(Session(session_token=sess_token, user_id=user.id, expires_at=expires_at))
        await s.commit()
    return sess_token


async def get_user_by_session_token(session_token: str) -> Optional[User]:
    async with async_session() as s:
        q = await s.exec(select(Session).where(Session.session_token == session_token))
        sess_row = q.first()
        if not sess_row:
            return None
        if sess_row.expires_at and ensure_utc(sess_row.expires_at) < datetime.now(timezone.utc):
            # expired: delete row and return None
            await s.execute(sqlalchemy_delete(Session).where(Session.session_token == session_token))
            await s.commit()
            logger.info('session expired for user_id=%s', sess_row.user_id)
            return None
        return await s.get(User, sess_row.user_id)


async def delete_session(session_token: str) -> None:
    async with async_session() as s:
        await s.execute(sqlalchemy_delete(Session).where(Session.session_token == session_token))
        await s.commit()


async def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


async def authenticate_user(username: str, password: str) -> Optional[User]:
    user = await get_user_by_username(username)
    if not user:
        return None
    if not await verify_password(password, user.password_hash):
        return None
    return user


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    # RFC 7519 recommends NumericDate (seconds since epoch). Encode as int.
    to_encode.update({"exp": int(expire.timestamp())})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), request: Request = None) -> Optional[User]:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    # An Authorization header is authoritative: validate only that token so a
    # valid cookie cannot mask a tampered bearer token.
    if token is None and request is not None:
        session_token = request.cookies.get("session_token")
        if session_token:
            user = await get_user_by_session_token(session_token)
            if user:
                return user
    if not token:
        if config.DEV_MODE:
            return await get_user_by_username(config.DEV_USERNAME)
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
        token_data = TokenData(username=username)
    except JWTError:
        logger.info('rejected bearer token: decode failed')
        raise credentials_exception
    user = await get_user_by_username(token_data.username)
    if user is None:
        raise credentials_exception
    return user


async def require_login(user: Optional[User] = Depends(get_current_user)) -> User:
    """Dependency that enforces an authenticated user.

    Returns the User when present, otherwise raises 401 Unauthorized.
    """
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    return user
