"""
Session identity: resolves the calling principal for a request.

The session cookie holds a signed token naming a session id; the session
store maps that id to a principal id. Any break in the chain (no cookie,
bad signature, unknown or expired session, deleted principal, store
outage) resolves to the anonymous principal, ``None``.
"""
import logging

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from zomp.config import settings
from zomp.database import get_db
from zomp.models import User
from zomp.security import create_session_token, decode_session_token
from zomp.sessions import SessionStoreError, session_store

logger = logging.getLogger(__name__)


async def get_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User | None:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        return None

    session_id = decode_session_token(token)
    if session_id is None:
        return None

    try:
        user_id = await session_store.resolve(session_id)
    except SessionStoreError as exc:
        logger.warning("Session lookup failed, treating request as anonymous: %s", exc)
        return None
    if user_id is None:
        return None

    return await db.get(User, user_id)


async def start_session(response: Response, user: User) -> None:
    """Bind *user* to a fresh session and set the cookie on *response*."""
    session_id = await session_store.create(user.id)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        create_session_token(session_id),
        max_age=settings.SESSION_TTL_SECONDS,
        httponly=True,
        samesite="lax",
        secure=settings.APP_ENV == "production",
    )


async def end_session(request: Request, response: Response) -> None:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    session_id = decode_session_token(token) if token else None
    if session_id is not None:
        try:
            await session_store.destroy(session_id)
        except SessionStoreError as exc:
            logger.warning("Could not destroy session on logout: %s", exc)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
