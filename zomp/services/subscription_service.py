"""
Subscription service: directed subscribe edges between principals.

An edge is a row in ``subscriptions``; its primary key forbids duplicate
edges. The target's denormalised ``subscriber_count`` moves with every
edge change through an arithmetic ``UPDATE`` in the same transaction as
the edge write, so the counter and the edge set cannot drift apart.
Subscribing to oneself is permitted.
"""
import logging

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from zomp.errors import bad_request
from zomp.guards import parse_id
from zomp.models import User, subscriptions

logger = logging.getLogger(__name__)

NO_USER = "no user found with given id"
ALREADY_SUBSCRIBED = "already subscribed"


async def list_subscriptions(db: AsyncSession, user_id: str) -> list[str]:
    """Return the ids *user_id* subscribes to, oldest edge first."""
    result = await db.execute(
        select(subscriptions.c.author_id)
        .where(subscriptions.c.subscriber_id == user_id)
        .order_by(subscriptions.c.created_at)
    )
    return list(result.scalars().all())


async def _resolve_target(db: AsyncSession, raw_id) -> User:
    target_id = parse_id(raw_id)
    target = await db.get(User, target_id) if target_id else None
    if target is None:
        raise bad_request(NO_USER)
    return target


async def _edge_exists(db: AsyncSession, subscriber_id: str, author_id: str) -> bool:
    result = await db.execute(
        select(subscriptions.c.author_id).where(
            subscriptions.c.subscriber_id == subscriber_id,
            subscriptions.c.author_id == author_id,
        )
    )
    return result.first() is not None


async def _shift_counter(db: AsyncSession, user_id: str, delta: int) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(subscriber_count=User.subscriber_count + delta)
        .execution_options(synchronize_session=False)
    )


async def subscribe(db: AsyncSession, user: User, target_raw) -> User:
    target = await _resolve_target(db, target_raw)
    if await _edge_exists(db, user.id, target.id):
        raise bad_request(ALREADY_SUBSCRIBED)

    try:
        await db.execute(insert(subscriptions).values(subscriber_id=user.id, author_id=target.id))
    except IntegrityError:
        # A concurrent subscribe created the same edge first.
        raise bad_request(ALREADY_SUBSCRIBED)
    await _shift_counter(db, target.id, 1)
    await db.refresh(target, ["subscriber_count"])

    logger.info("User %s subscribed to %s", user.id, target.id)
    return target


async def unsubscribe(db: AsyncSession, user: User, target_raw) -> User:
    target = await _resolve_target(db, target_raw)
    if not await _edge_exists(db, user.id, target.id):
        raise bad_request("not subscribed")

    await db.execute(
        delete(subscriptions).where(
            subscriptions.c.subscriber_id == user.id,
            subscriptions.c.author_id == target.id,
        )
    )
    await _shift_counter(db, target.id, -1)
    await db.refresh(target, ["subscriber_count"])

    logger.info("User %s unsubscribed from %s", user.id, target.id)
    return target


async def remove_all_edges(db: AsyncSession, user_id: str) -> None:
    """Drop every edge touching *user_id*, decrementing the targets it followed."""
    for author_id in await list_subscriptions(db, user_id):
        await _shift_counter(db, author_id, -1)
    await db.execute(
        delete(subscriptions).where(
            (subscriptions.c.subscriber_id == user_id) | (subscriptions.c.author_id == user_id)
        )
    )
