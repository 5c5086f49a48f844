"""
Guard chain: the authorization gate in front of every guarded endpoint.

A guard is an async predicate over an immutable ``GuardContext``. It
returns either ``Proceed(context)``, possibly carrying an enriched
context, or ``Reject(status_code, message)``. ``run_chain`` folds a
sequence of guards left to right and stops at the first rejection, so
later guards never run. Guards only read from the document store; all
writes belong to the terminal handler.

Canonical orderings::

    mutate:           authenticated -> verified -> resource_resolved -> is_owner
    rate / comment:   authenticated -> verified -> resource_resolved -> is_published

``GuardChain`` wraps a sequence as a FastAPI dependency. The verification
policy is a constructor flag (default ``settings.REQUIRE_VERIFIED``);
when it is off the ``verified`` guard is left out of the chain.
"""
import uuid
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Sequence, Union

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from zomp.config import settings
from zomp.database import get_db
from zomp.dependencies import get_principal
from zomp.errors import ApiError
from zomp.models import RESOURCE_MODELS, User

NOT_LOGGED_IN = "not logged in"
NOT_VERIFIED = "must be verified to perform requested action"
NOT_AUTHOR = "must be the author to modify the selected resource"
NOT_PUBLISHED = "resource must be published to perform requested action"


def not_found_message(kind: str) -> str:
    return f"no {kind} found with given id"


def parse_id(raw: Any) -> str | None:
    """Normalise an opaque identifier, or return None if it is malformed."""
    if not isinstance(raw, str):
        return None
    try:
        return uuid.UUID(raw).hex
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Context and outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GuardContext:
    db: AsyncSession
    principal: User | None
    params: Mapping[str, str] = field(default_factory=dict)
    resource: Any = None


@dataclass(frozen=True)
class Proceed:
    context: GuardContext


@dataclass(frozen=True)
class Reject:
    status_code: int
    message: str


Outcome = Union[Proceed, Reject]
Guard = Callable[[GuardContext], Awaitable[Outcome]]


async def run_chain(guards: Sequence[Guard], context: GuardContext) -> Outcome:
    for guard in guards:
        outcome = await guard(context)
        if isinstance(outcome, Reject):
            return outcome
        context = outcome.context
    return Proceed(context)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

async def authenticated(context: GuardContext) -> Outcome:
    if context.principal is None:
        return Reject(401, NOT_LOGGED_IN)
    return Proceed(context)


async def verified(context: GuardContext) -> Outcome:
    if context.principal is None or not context.principal.verified:
        return Reject(401, NOT_VERIFIED)
    return Proceed(context)


def resource_resolved(kind: str, param: str = "id") -> Guard:
    """Build a guard that loads the *kind* document named by path param *param*."""
    model = RESOURCE_MODELS[kind]

    async def _resolve(context: GuardContext) -> Outcome:
        resource_id = parse_id(context.params.get(param))
        if resource_id is None:
            return Reject(400, not_found_message(kind))
        resource = await context.db.get(model, resource_id)
        if resource is None:
            return Reject(400, not_found_message(kind))
        return Proceed(replace(context, resource=resource))

    _resolve.__name__ = f"{kind}_resolved"
    return _resolve


async def is_owner(context: GuardContext) -> Outcome:
    resource = context.resource
    principal = context.principal
    if resource is None or principal is None or str(resource.author_id) != str(principal.id):
        return Reject(401, NOT_AUTHOR)
    return Proceed(context)


async def is_published(context: GuardContext) -> Outcome:
    if context.resource is None or not context.resource.is_published:
        return Reject(400, NOT_PUBLISHED)
    return Proceed(context)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

class GuardChain:
    """
    Run a fixed guard sequence as a route dependency.

    Usage in a router::

        @router.put("/publish/{id}")
        async def publish(ctx: GuardContext = Depends(GuardChain(
            authenticated, verified, resource_resolved("comic"), is_owner,
        ))):
            ...

    A rejection is raised as ``ApiError`` before the handler body runs.
    """

    def __init__(self, *guards: Guard, require_verified: bool | None = None) -> None:
        if require_verified is None:
            require_verified = settings.REQUIRE_VERIFIED
        self.require_verified = require_verified
        self.guards: tuple[Guard, ...] = tuple(
            g for g in guards if require_verified or g is not verified
        )

    async def evaluate(
        self,
        db: AsyncSession,
        principal: User | None,
        params: Mapping[str, str] | None = None,
    ) -> Outcome:
        context = GuardContext(
            db=db,
            principal=principal,
            params=MappingProxyType(dict(params or {})),
        )
        return await run_chain(self.guards, context)

    async def __call__(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db),
        principal: User | None = Depends(get_principal),
    ) -> GuardContext:
        outcome = await self.evaluate(db, principal, request.path_params)
        if isinstance(outcome, Reject):
            raise ApiError(outcome.status_code, outcome.message)
        return outcome.context


def member_chain(**kwargs) -> GuardChain:
    return GuardChain(authenticated, verified, **kwargs)


def owner_chain(kind: str, **kwargs) -> GuardChain:
    return GuardChain(authenticated, verified, resource_resolved(kind), is_owner, **kwargs)


def published_chain(kind: str, **kwargs) -> GuardChain:
    return GuardChain(authenticated, verified, resource_resolved(kind), is_published, **kwargs)
