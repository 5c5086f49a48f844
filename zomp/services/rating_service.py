"""
Rating aggregator: the per-principal ledger and per-resource aggregates.

A principal holds at most one ledger entry per resource (the ``ratings``
primary key). Rating again replaces the entry in place and shifts the
resource total by the difference, leaving ``rating_count`` unchanged.

The ledger entry is claimed with ``INSERT ... ON CONFLICT DO NOTHING``; when
it already exists it is read ``FOR UPDATE`` (a no-op on SQLite) before its
delta is computed. Aggregates are never read-modified-written in Python:
the resource row is changed by a single
``UPDATE ... SET rating_total = rating_total + :delta`` so concurrent raters
cannot overwrite each other's totals. All writes share the request
transaction. Withdrawing a principal's ratings rebuilds the affected
aggregates from the ledger instead.
"""
import logging
import math

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from zomp.errors import bad_request
from zomp.models import RESOURCE_MODELS, Rating, User

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}

MIN_RATING = 0
MAX_RATING = 5


def validate_rating(value) -> float:
    """Return *value* as a float, or raise ``400 invalid rating``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise bad_request("invalid rating")
    if math.isnan(value) or not MIN_RATING <= value <= MAX_RATING:
        raise bad_request("invalid rating")
    return float(value)


async def _apply_delta(
    db: AsyncSession, kind: str, resource_id: str, delta_total: float, delta_count: int
) -> None:
    model = RESOURCE_MODELS[kind]
    new_total = model.rating_total + delta_total
    new_count = model.rating_count + delta_count
    stmt = (
        update(model)
        .where(model.id == resource_id)
        .values(
            rating_total=case((new_count > 0, new_total), else_=0.0),
            rating_count=new_count,
            rating=case((new_count > 0, new_total / new_count), else_=0.0),
        )
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)


async def get_ledger(db: AsyncSession, user_id: str, kind: str) -> dict[str, float]:
    """Return ``{resource_id: value}`` for every *kind* resource *user_id* rated."""
    result = await db.execute(
        select(Rating.resource_id, Rating.value).where(
            Rating.user_id == user_id, Rating.resource_kind == kind
        )
    )
    return {resource_id: value for resource_id, value in result.all()}


def _ledger_insert(db: AsyncSession):
    """The dialect's ``INSERT`` construct, which supports ``ON CONFLICT``."""
    dialect = db.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"rating ledger upsert is not supported on {dialect!r}") from None


async def _claim_entry(db: AsyncSession, user_id: str, kind: str, resource_id: str, value: float) -> bool:
    """
    Insert the ledger entry unless one already exists. Returns True when
    this call created it. A concurrent insert of the same key waits on the
    primary key and then reports a conflict instead of failing.
    """
    stmt = (
        _ledger_insert(db)(Rating)
        .values(user_id=user_id, resource_kind=kind, resource_id=resource_id, value=value)
        .on_conflict_do_nothing(index_elements=["user_id", "resource_kind", "resource_id"])
        .returning(Rating.user_id)
    )
    result = await db.execute(stmt)
    return result.first() is not None


async def rate(db: AsyncSession, resource, user: User, value) -> dict:
    """
    Upsert *user*'s rating of *resource* and return the new aggregates.

    Raises ``400 invalid rating`` unless ``0 <= value <= 5``.
    """
    value = validate_rating(value)
    kind = resource.kind

    if await _claim_entry(db, user.id, kind, resource.id, value):
        delta_total, delta_count = value, 1
    else:
        q = (
            select(Rating)
            .where(
                Rating.user_id == user.id,
                Rating.resource_kind == kind,
                Rating.resource_id == resource.id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        entry = (await db.execute(q)).scalar_one()
        delta_total, delta_count = value - entry.value, 0
        entry.value = value
        await db.flush()

    await _apply_delta(db, kind, resource.id, delta_total, delta_count)
    await db.refresh(resource)

    logger.info("User %s rated %s %s: %s", user.id, kind, resource.id, value)
    return {
        "rating": resource.rating,
        "rating_total": resource.rating_total,
        "rating_count": resource.rating_count,
    }


async def _recompute(db: AsyncSession, kind: str, resource_id: str) -> None:
    """Rebuild a resource's aggregates from the ledger entries left for it."""
    model = RESOURCE_MODELS[kind]
    scope = (Rating.resource_kind == kind, Rating.resource_id == resource_id)
    total = select(func.coalesce(func.sum(Rating.value), 0.0)).where(*scope).scalar_subquery()
    count = select(func.count()).select_from(Rating).where(*scope).scalar_subquery()
    await db.execute(
        update(model)
        .where(model.id == resource_id)
        .values(
            rating_total=total,
            rating_count=count,
            rating=case((count > 0, total / count), else_=0.0),
        )
        .execution_options(synchronize_session=False)
    )


async def withdraw_all(db: AsyncSession, user_id: str) -> int:
    """
    Remove every ledger entry of *user_id* and rebuild the aggregates of
    each resource it had rated. Returns the number of entries removed.
    """
    result = await db.execute(
        select(Rating.resource_kind, Rating.resource_id).where(Rating.user_id == user_id)
    )
    rated = result.all()
    await db.execute(delete(Rating).where(Rating.user_id == user_id))
    for kind, resource_id in rated:
        await _recompute(db, kind, resource_id)
    return len(rated)


async def remove_for_resource(db: AsyncSession, kind: str, resource_id: str) -> None:
    """Drop all ledger entries that point at a deleted resource."""
    await db.execute(
        delete(Rating).where(Rating.resource_kind == kind, Rating.resource_id == resource_id)
    )
