"""
Comment service: comments on published comics and stories.

Comments are not addressed by their own id: within a resource a comment is
identified by its author and creation timestamp, and deletion matches on
exact ``created_at`` equality for the calling principal's comments.
Publication state is enforced by the guard chain in front of these calls.
"""
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from zomp.errors import bad_request
from zomp.models import Comment, User


def comment_to_dict(comment: Comment) -> dict:
    return {
        "author": comment.author_id,
        "content": comment.content,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }


async def list_comments(db: AsyncSession, kind: str, resource_id: str) -> list[dict]:
    q = (
        select(Comment)
        .where(Comment.resource_kind == kind, Comment.resource_id == resource_id)
        .order_by(Comment.created_at, Comment.id)
    )
    result = await db.execute(q)
    return [comment_to_dict(c) for c in result.scalars().all()]


async def add_comment(db: AsyncSession, resource, user: User, text) -> dict:
    """Append a comment by *user* to *resource* and return it serialised."""
    if not isinstance(text, str) or not text.strip():
        raise bad_request("invalid comment")

    comment = Comment(
        resource_kind=resource.kind,
        resource_id=resource.id,
        author_id=user.id,
        content=text,
    )
    db.add(comment)
    await db.flush()
    return comment_to_dict(comment)


async def delete_comment(db: AsyncSession, resource, user: User, created_at: str | None) -> None:
    """
    Delete *user*'s comment on *resource* created at *created_at* (ISO 8601).

    Raises ``400 no comment found`` when nothing matches.
    """
    if not created_at:
        raise bad_request("Missing arguments in request")
    try:
        timestamp = datetime.fromisoformat(created_at)
    except ValueError:
        raise bad_request("invalid comment timestamp")

    result = await db.execute(
        delete(Comment)
        .where(
            Comment.resource_kind == resource.kind,
            Comment.resource_id == resource.id,
            Comment.author_id == user.id,
            Comment.created_at == timestamp,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise bad_request("no comment found")


async def remove_for_resource(db: AsyncSession, kind: str, resource_id: str) -> None:
    await db.execute(
        delete(Comment).where(Comment.resource_kind == kind, Comment.resource_id == resource_id)
    )


async def remove_by_author(db: AsyncSession, user_id: str) -> None:
    await db.execute(delete(Comment).where(Comment.author_id == user_id))
