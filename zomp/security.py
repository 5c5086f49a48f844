"""Password hashing and signed tokens.

Two token families are signed here:

- **Session tokens** carry only a session id and are signed with
  ``SECRET_KEY``; the session store maps the id to a principal.
- **Password-bound tokens** (email verification, password reset) are
  signed with ``SECRET_KEY`` concatenated with the principal's current
  password hash, so changing the password invalidates every outstanding
  token. They expire after ``TOKEN_EXPIRE_MINUTES``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt
from starlette.concurrency import run_in_threadpool

from zomp.config import settings

SESSION_TOKEN_TYPE = "session"


def _encode_password(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes.
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_encode_password(password), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Constant-time check of *plain_password* against a bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode_password(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


async def hash_password_async(password: str) -> str:
    return await run_in_threadpool(hash_password, password)


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

def create_session_token(session_id: str) -> str:
    return jwt.encode(
        {"sid": session_id, "type": SESSION_TOKEN_TYPE},
        settings.SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_session_token(token: str) -> str | None:
    """Return the session id carried by *token*, or None if it is not ours."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != SESSION_TOKEN_TYPE:
        return None
    session_id = payload.get("sid")
    return session_id if isinstance(session_id, str) else None


# ---------------------------------------------------------------------------
# Password-bound tokens
# ---------------------------------------------------------------------------

def _token_secret(user) -> str:
    return settings.SECRET_KEY + user.password_hash


def issue_token(user, expires_delta: timedelta | None = None) -> str:
    """Create a verification/reset token bound to *user*'s password hash."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.TOKEN_EXPIRE_MINUTES)
    payload = {
        "id": user.id,
        "email": user.email,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, _token_secret(user), algorithm=settings.JWT_ALGORITHM)


def verify_token(user, token: str) -> dict[str, Any] | None:
    """
    Return the decoded payload when *token* is valid for *user*, else None.

    Fails closed: bad signatures, expiry, a password change since issue and
    tokens issued for another principal all yield None. Never raises.
    """
    try:
        payload = jwt.decode(token, _token_secret(user), algorithms=[settings.JWT_ALGORITHM])
    except (JWTError, TypeError, ValueError):
        return None
    if payload.get("id") != user.id:
        return None
    return payload
