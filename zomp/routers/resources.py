"""
Routers for the two publishable resource kinds.

Comics and stories expose the same endpoints, so one factory builds both
routers. Every route declares its guard chain as a dependency; the chain
has finished (or rejected the request) before the handler body runs, and
request bodies are only decoded inside the handler, after the chain.
"""
from fastapi import APIRouter, Depends, Request

from zomp.guards import (
    GuardChain,
    GuardContext,
    member_chain,
    owner_chain,
    published_chain,
    resource_resolved,
)
from zomp.models import COMIC, STORY
from zomp.schemas import CommentRequest, ComicUpdate, RateRequest, StoryUpdate, read_body
from zomp.services import comment_service, rating_service, resource_service

UPDATE_SCHEMAS = {COMIC: ComicUpdate, STORY: StoryUpdate}


def build_resource_router(kind: str) -> APIRouter:
    router = APIRouter(prefix=f"/{kind}", tags=[kind])
    update_schema = UPDATE_SCHEMAS[kind]

    readable = GuardChain(resource_resolved(kind))
    member = member_chain()
    owner = owner_chain(kind)
    published = published_chain(kind)

    @router.get("/{id}")
    async def get_resource(ctx: GuardContext = Depends(readable)):
        return {"data": await resource_service.resource_detail(ctx.db, ctx.resource)}

    @router.post("")
    async def create_resource(ctx: GuardContext = Depends(member)):
        resource = await resource_service.create_resource(ctx.db, kind, ctx.principal)
        return {"data": resource_service.resource_to_dict(resource)}

    @router.put("/{id}")
    async def update_resource(request: Request, ctx: GuardContext = Depends(owner)):
        data = await read_body(request, update_schema)
        fields = getattr(data, kind) if data is not None else None
        resource = await resource_service.update_resource(ctx.db, ctx.resource, fields)
        return {"data": resource_service.resource_to_dict(resource)}

    @router.delete("/{id}")
    async def delete_resource(ctx: GuardContext = Depends(owner)):
        await resource_service.delete_resource(ctx.db, ctx.resource)
        return {"message": f"Successfully deleted {kind}."}

    @router.put("/publish/{id}")
    async def publish(ctx: GuardContext = Depends(owner)):
        await resource_service.publish(ctx.db, ctx.resource)
        return {"message": "successfully published"}

    @router.put("/unpublish/{id}")
    async def unpublish(ctx: GuardContext = Depends(owner)):
        await resource_service.unpublish(ctx.db, ctx.resource)
        return {"message": "successfully unpublished"}

    @router.put("/rate/{id}")
    async def rate(request: Request, ctx: GuardContext = Depends(published)):
        data = await read_body(request, RateRequest)
        value = data.rating if data is not None else None
        aggregates = await rating_service.rate(ctx.db, ctx.resource, ctx.principal, value)
        return {"data": aggregates}

    @router.put("/comment/{id}")
    async def add_comment(request: Request, ctx: GuardContext = Depends(published)):
        data = await read_body(request, CommentRequest)
        text = data.comment if data is not None else None
        comment = await comment_service.add_comment(ctx.db, ctx.resource, ctx.principal, text)
        return {"data": comment}

    @router.delete("/comment/{id}")
    async def delete_comment(
        created_at: str | None = None,
        ctx: GuardContext = Depends(published),
    ):
        await comment_service.delete_comment(ctx.db, ctx.resource, ctx.principal, created_at)
        return {"message": "successfully deleted comment"}

    return router


comic_router = build_resource_router(COMIC)
story_router = build_resource_router(STORY)
