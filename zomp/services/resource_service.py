"""
Resource service: lifecycle of comics and stories.

Both kinds share one implementation; the kind is carried by the model
class (``Comic.kind``/``Story.kind``). Lifecycle::

    Draft (published_at is None) --publish--> Published
    Published --publish--> Published      (timestamp reset, no error)
    Published --unpublish--> Draft
    Draft --unpublish--> Draft

Authorization and publication checks happen in the guard chain; the
functions here assume the caller has already passed it.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from zomp.errors import bad_request
from zomp.models import RESOURCE_MODELS, User, utcnow
from zomp.schemas import ResourceFields
from zomp.services import comment_service, rating_service

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLES = {"comic": "Unnamed Comic", "story": "Unnamed Story"}


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def resource_to_dict(resource) -> dict:
    """Serialise a Comic/Story ORM instance to a plain dict (list view)."""
    return {
        "id": resource.id,
        "kind": resource.kind,
        "author": resource.author_id,
        "title": resource.title,
        "description": resource.description,
        "content": resource.content,
        "tags": list(resource.tags or []),
        "published_at": resource.published_at.isoformat() if resource.published_at else None,
        "rating": resource.rating,
        "rating_total": resource.rating_total,
        "rating_count": resource.rating_count,
        "created_at": resource.created_at.isoformat() if resource.created_at else None,
        "updated_at": resource.updated_at.isoformat() if resource.updated_at else None,
    }


async def resource_detail(db: AsyncSession, resource) -> dict:
    """Serialise a resource including its comments (detail view)."""
    data = resource_to_dict(resource)
    data["comments"] = await comment_service.list_comments(db, resource.kind, resource.id)
    return data


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_resource(db: AsyncSession, kind: str, author: User):
    """Create an empty draft owned by *author*."""
    model = RESOURCE_MODELS[kind]
    resource = model(title=PLACEHOLDER_TITLES[kind], author_id=author.id, tags=[])
    db.add(resource)
    await db.flush()
    logger.info("User %s created %s %s", author.id, kind, resource.id)
    return resource


async def update_resource(db: AsyncSession, resource, fields: ResourceFields | None):
    """
    Apply an author edit. Only fields present and non-null in the payload
    are modified.
    """
    if fields is None:
        raise bad_request("Missing arguments in request")

    for field, value in fields.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(resource, field, value)

    await db.flush()
    await db.refresh(resource)
    return resource


async def delete_resource(db: AsyncSession, resource) -> None:
    """Delete *resource* together with its comments and ledger entries."""
    await comment_service.remove_for_resource(db, resource.kind, resource.id)
    await rating_service.remove_for_resource(db, resource.kind, resource.id)
    await db.delete(resource)
    await db.flush()
    logger.info("Deleted %s %s", resource.kind, resource.id)


async def publish(db: AsyncSession, resource):
    resource.published_at = utcnow()
    await db.flush()
    await db.refresh(resource)
    logger.info("Published %s %s", resource.kind, resource.id)
    return resource


async def unpublish(db: AsyncSession, resource):
    resource.published_at = None
    await db.flush()
    await db.refresh(resource)
    logger.info("Unpublished %s %s", resource.kind, resource.id)
    return resource
