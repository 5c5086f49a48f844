"""
Account service: registration, credentials, profile and verification.

Emails are stored lowercased; usernames are stored as given. Both are
unique. Password-bound tokens (see ``zomp.security``) drive the email
verification and password-reset flows; they are invalidated by any
password change because the hash is part of their signing key.
"""
import logging

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from zomp.errors import bad_request, unauthorized
from zomp.guards import parse_id
from zomp.models import COMIC, STORY, Comic, Story, User
from zomp.schemas import AccountUpdate, PasswordResetRequest, RegisterRequest, TokenRequest
from zomp.security import hash_password_async, verify_password_async, verify_token
from zomp.services import comment_service, rating_service, resource_service, subscription_service

logger = logging.getLogger(__name__)

MISSING_ARGUMENTS = "Missing arguments in request"
DUPLICATE_ACCOUNT = "Account with that email address and/or username already exists."
MISSING_TOKEN_ARGUMENTS = "Must provide all required arguments"
USER_NOT_FOUND = "User not found"
INVALID_TOKEN = "Token is invalid or expired"


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _user_to_dict(user: User) -> dict:
    """Public view of a principal."""
    return {
        "id": user.id,
        "username": user.username,
        "bio": user.bio,
        "verified": user.verified,
        "subscriber_count": user.subscriber_count,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def _load_with_resources(db: AsyncSession, user_id: str) -> User | None:
    q = (
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.comics), selectinload(User.stories))
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalar_one_or_none()


async def get_profile(db: AsyncSession, raw_id) -> dict:
    """Public profile with owned resource ids; ``400`` if the id is unknown."""
    user_id = parse_id(raw_id)
    user = await _load_with_resources(db, user_id) if user_id else None
    if user is None:
        raise bad_request("no user found with given id")
    data = _user_to_dict(user)
    data["comics"] = [c.id for c in user.comics]
    data["stories"] = [s.id for s in user.stories]
    return data


async def get_account(db: AsyncSession, user: User) -> dict:
    """Private view of the calling principal: profile, edges and ledgers."""
    data = await get_profile(db, user.id)
    data["email"] = user.email
    data["subscriptions"] = await subscription_service.list_subscriptions(db, user.id)
    data["comic_ratings"] = await rating_service.get_ledger(db, user.id, COMIC)
    data["story_ratings"] = await rating_service.get_ledger(db, user.id, STORY)
    return data


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------

async def _identity_taken(
    db: AsyncSession, email: str | None, username: str | None, exclude_id: str | None = None
) -> bool:
    clauses = []
    if email:
        clauses.append(User.email == email)
    if username:
        clauses.append(User.username == username)
    if not clauses:
        return False
    q = select(User.id).where(or_(*clauses))
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    return (await db.execute(q)).first() is not None


async def register(db: AsyncSession, data: RegisterRequest) -> User:
    """Create an unverified principal; the caller sends the verification email."""
    if not data.email or not data.username or not data.password:
        raise bad_request(MISSING_ARGUMENTS)

    email = data.email.lower()
    if await _identity_taken(db, email, data.username):
        raise bad_request(DUPLICATE_ACCOUNT)

    user = User(
        email=email,
        username=data.username,
        password_hash=await hash_password_async(data.password),
        verified=False,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent registration of the same identity.
        raise bad_request(DUPLICATE_ACCOUNT)

    logger.info("User registered: %s", user.username)
    return user


async def authenticate(db: AsyncSession, email: str | None, password: str | None) -> User:
    """Return the principal for an email/password pair or raise ``401``."""
    if not email or not password:
        raise bad_request(MISSING_ARGUMENTS)

    try:
        result = await db.execute(select(User).where(User.email == email.lower()))
        user = result.scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Account store lookup failed during login")
        raise unauthorized("unable to reach account store")

    if user is None:
        logger.info("Login failed, no such user: %s", email)
        raise unauthorized("User not found.")
    if not await verify_password_async(password, user.password_hash):
        logger.info("Login failed, bad password: %s", user.id)
        raise unauthorized("Invalid username or password.")

    logger.info("User logged in: %s", user.id)
    return user


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

async def update_account(db: AsyncSession, user: User, data: AccountUpdate) -> dict:
    email = data.email.lower() if data.email else None
    if await _identity_taken(db, email, data.username, exclude_id=user.id):
        raise bad_request(DUPLICATE_ACCOUNT)

    if data.new_password:
        if not data.old_password or not await verify_password_async(
            data.old_password, user.password_hash
        ):
            raise bad_request("Passwords do not match")
        user.password_hash = await hash_password_async(data.new_password)

    if email:
        user.email = email
    if data.username:
        user.username = data.username
    if data.bio is not None:
        user.bio = data.bio

    await db.flush()
    await db.refresh(user)
    return await get_account(db, user)


async def delete_account(db: AsyncSession, user: User) -> None:
    """
    Remove *user* and everything that hangs off it.

    Owned comics/stories go with their comments and ledger entries; the
    user's own ratings are backed out of the resources they rated; their
    comments and subscription edges are removed with counters adjusted.
    """
    for model in (Comic, Story):
        owned = await db.execute(select(model).where(model.author_id == user.id))
        for resource in owned.scalars().all():
            await resource_service.delete_resource(db, resource)

    await rating_service.withdraw_all(db, user.id)
    await comment_service.remove_by_author(db, user.id)
    await subscription_service.remove_all_edges(db, user.id)

    await db.execute(delete(User).where(User.id == user.id))
    logger.info("Deleted account %s", user.id)


# ---------------------------------------------------------------------------
# Token flows
# ---------------------------------------------------------------------------

async def find_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def _user_for_token(db: AsyncSession, data: TokenRequest) -> User:
    if not data.id or not data.token:
        raise bad_request(MISSING_TOKEN_ARGUMENTS)
    user_id = parse_id(data.id)
    user = await db.get(User, user_id) if user_id else None
    if user is None:
        raise bad_request(USER_NOT_FOUND)
    if verify_token(user, data.token) is None:
        raise bad_request(INVALID_TOKEN)
    return user


async def check_token(db: AsyncSession, data: TokenRequest) -> None:
    await _user_for_token(db, data)


async def verify_email(db: AsyncSession, data: TokenRequest) -> User:
    user = await _user_for_token(db, data)
    user.verified = True
    await db.flush()
    logger.info("User verified: %s", user.id)
    return user


async def reset_password(db: AsyncSession, data: PasswordResetRequest) -> User:
    if not data.password:
        raise bad_request(MISSING_TOKEN_ARGUMENTS)
    user = await _user_for_token(db, data)
    user.password_hash = await hash_password_async(data.password)
    await db.flush()
    logger.info("Password reset for user %s", user.id)
    return user
