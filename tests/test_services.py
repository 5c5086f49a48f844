"""
Direct service-layer tests: business logic without HTTP.

These call service functions with a database session, covering the
aggregate arithmetic, the cascade on account deletion, and the edge and
counter bookkeeping more precisely than the endpoint tests can.
"""
import pytest
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from zomp.errors import ApiError
from zomp.models import COMIC, STORY, Comic, Comment, Rating, Story, User, subscriptions, utcnow
from zomp.schemas import AccountUpdate, RegisterRequest, ResourceFields
from zomp.security import hash_password
from zomp.services import (
    account_service,
    comment_service,
    rating_service,
    resource_service,
    subscription_service,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, username: str, verified: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=hash_password("pw"),
        verified=verified,
    )
    db.add(user)
    await db.flush()
    return user


async def _published(db: AsyncSession, kind: str, author: User):
    resource = await resource_service.create_resource(db, kind, author)
    return await resource_service.publish(db, resource)


# ---------------------------------------------------------------------------
# resource_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_resource_defaults(db_session: AsyncSession):
    author = await _create_user(db_session, "maker")
    story = await resource_service.create_resource(db_session, STORY, author)
    data = resource_service.resource_to_dict(story)
    assert data["kind"] == STORY
    assert data["title"] == "Unnamed Story"
    assert data["tags"] == []
    assert data["rating"] == 0
    assert data["rating_total"] == 0
    assert data["rating_count"] == 0
    assert data["published_at"] is None


@pytest.mark.asyncio
async def test_update_ignores_null_fields(db_session: AsyncSession):
    author = await _create_user(db_session, "editor")
    comic = await resource_service.create_resource(db_session, COMIC, author)
    await resource_service.update_resource(db_session, comic, ResourceFields(title="Kept", content="c"))
    await resource_service.update_resource(db_session, comic, ResourceFields(title=None, description="d"))
    assert comic.title == "Kept"
    assert comic.content == "c"
    assert comic.description == "d"


@pytest.mark.asyncio
async def test_update_without_fields(db_session: AsyncSession):
    author = await _create_user(db_session, "blank")
    comic = await resource_service.create_resource(db_session, COMIC, author)
    with pytest.raises(ApiError) as exc_info:
        await resource_service.update_resource(db_session, comic, None)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_publish_toggles_state(db_session: AsyncSession):
    author = await _create_user(db_session, "toggler")
    comic = await resource_service.create_resource(db_session, COMIC, author)
    assert not comic.is_published
    await resource_service.publish(db_session, comic)
    assert comic.is_published
    await resource_service.unpublish(db_session, comic)
    assert not comic.is_published


@pytest.mark.asyncio
async def test_resource_detail_includes_comments(db_session: AsyncSession):
    author = await _create_user(db_session, "detailed")
    comic = await _published(db_session, COMIC, author)
    await comment_service.add_comment(db_session, comic, author, "first!")
    detail = await resource_service.resource_detail(db_session, comic)
    assert [c["content"] for c in detail["comments"]] == ["first!"]
    assert detail["comments"][0]["author"] == author.id


# ---------------------------------------------------------------------------
# rating_service
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value", [0, 1, 2.75, 5])
def test_validate_rating_accepts_range(value):
    assert rating_service.validate_rating(value) == float(value)


@pytest.mark.parametrize("value", [-0.1, 5.01, float("nan"), "3", None, False])
def test_validate_rating_rejects(value):
    with pytest.raises(ApiError) as exc_info:
        rating_service.validate_rating(value)
    assert exc_info.value.message == "invalid rating"


@pytest.mark.asyncio
async def test_rate_upserts_single_ledger_entry(db_session: AsyncSession):
    author = await _create_user(db_session, "rated")
    rater = await _create_user(db_session, "rater")
    comic = await _published(db_session, COMIC, author)

    await rating_service.rate(db_session, comic, rater, 3)
    result = await rating_service.rate(db_session, comic, rater, 5)
    assert result == {"rating": 5.0, "rating_total": 5.0, "rating_count": 1}

    entries = (await db_session.execute(select(Rating))).scalars().all()
    assert len(entries) == 1
    assert entries[0].value == 5


@pytest.mark.asyncio
async def test_aggregates_stay_consistent_with_ledger(db_session: AsyncSession):
    author = await _create_user(db_session, "popular")
    story = await _published(db_session, STORY, author)
    raters = [await _create_user(db_session, f"r{i}") for i in range(4)]

    for rater, value in zip(raters, [1, 2, 3, 4]):
        await rating_service.rate(db_session, story, rater, value)
    await rating_service.rate(db_session, story, raters[0], 5)

    ledger = (await db_session.execute(select(Rating.value))).scalars().all()
    assert story.rating_count == len(ledger) == 4
    assert story.rating_total == sum(ledger) == 14
    assert story.rating == pytest.approx(3.5)


@pytest.mark.asyncio
async def test_withdraw_all_resets_to_zero(db_session: AsyncSession):
    author = await _create_user(db_session, "lonely")
    rater = await _create_user(db_session, "fickle")
    comic = await _published(db_session, COMIC, author)
    await rating_service.rate(db_session, comic, rater, 4)

    removed = await rating_service.withdraw_all(db_session, rater.id)
    assert removed == 1
    await db_session.refresh(comic)
    assert comic.rating_count == 0
    assert comic.rating_total == 0
    assert comic.rating == 0


@pytest.mark.asyncio
async def test_ledger_is_split_by_kind(db_session: AsyncSession):
    author = await _create_user(db_session, "both")
    rater = await _create_user(db_session, "critic")
    comic = await _published(db_session, COMIC, author)
    story = await _published(db_session, STORY, author)
    await rating_service.rate(db_session, comic, rater, 1)
    await rating_service.rate(db_session, story, rater, 2)

    assert await rating_service.get_ledger(db_session, rater.id, COMIC) == {comic.id: 1.0}
    assert await rating_service.get_ledger(db_session, rater.id, STORY) == {story.id: 2.0}


@pytest.mark.asyncio
async def test_rate_when_entry_was_written_concurrently(db_session: AsyncSession):
    author = await _create_user(db_session, "contested")
    rater = await _create_user(db_session, "double")
    comic = await _published(db_session, COMIC, author)

    # Another request's first rating lands between this request's reads.
    await db_session.execute(
        insert(Rating).values(user_id=rater.id, resource_kind=COMIC, resource_id=comic.id, value=2.0)
    )
    await rating_service._apply_delta(db_session, COMIC, comic.id, 2.0, 1)

    result = await rating_service.rate(db_session, comic, rater, 4)
    assert result == {"rating": 4.0, "rating_total": 4.0, "rating_count": 1}
    entries = (await db_session.execute(select(Rating.value))).scalars().all()
    assert entries == [4.0]


@pytest.mark.asyncio
async def test_withdraw_all_rebuilds_exact_totals(db_session: AsyncSession):
    author = await _create_user(db_session, "exact")
    first = await _create_user(db_session, "first")
    second = await _create_user(db_session, "second")
    story = await _published(db_session, STORY, author)
    await rating_service.rate(db_session, story, first, 0.1)
    await rating_service.rate(db_session, story, second, 0.2)

    await rating_service.withdraw_all(db_session, first.id)
    await db_session.refresh(story)
    assert story.rating_count == 1
    assert story.rating_total == 0.2
    assert story.rating == 0.2


# ---------------------------------------------------------------------------
# subscription_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_subscribe_moves_counter_with_edge(db_session: AsyncSession):
    author = await _create_user(db_session, "followed")
    fan = await _create_user(db_session, "follower")

    target = await subscription_service.subscribe(db_session, fan, author.id)
    assert target.subscriber_count == 1
    assert await subscription_service.list_subscriptions(db_session, fan.id) == [author.id]

    target = await subscription_service.unsubscribe(db_session, fan, author.id)
    assert target.subscriber_count == 0
    assert await subscription_service.list_subscriptions(db_session, fan.id) == []


@pytest.mark.asyncio
async def test_remove_all_edges(db_session: AsyncSession):
    a = await _create_user(db_session, "a")
    b = await _create_user(db_session, "b")
    c = await _create_user(db_session, "c")
    await subscription_service.subscribe(db_session, a, b.id)
    await subscription_service.subscribe(db_session, c, a.id)

    await subscription_service.remove_all_edges(db_session, a.id)

    await db_session.refresh(b)
    assert b.subscriber_count == 0
    edges = (await db_session.execute(select(subscriptions))).all()
    assert edges == []


@pytest.mark.asyncio
async def test_subscribe_duplicate_edge_from_concurrent_insert(db_session: AsyncSession, monkeypatch):
    author = await _create_user(db_session, "raced")
    fan = await _create_user(db_session, "eager")
    target = await subscription_service.subscribe(db_session, fan, author.id)
    assert target.subscriber_count == 1

    # The existence check misses an edge another request has just written.
    async def no_edge(db, subscriber_id, author_id):
        return False

    monkeypatch.setattr(subscription_service, "_edge_exists", no_edge)
    with pytest.raises(ApiError) as exc_info:
        await subscription_service.subscribe(db_session, fan, author.id)
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "already subscribed"


# ---------------------------------------------------------------------------
# account_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_normalises_email(db_session: AsyncSession):
    user = await account_service.register(
        db_session, RegisterRequest(email="MiXeD@Example.COM", username="Mixed", password="pw")
    )
    assert user.email == "mixed@example.com"
    assert user.username == "Mixed"
    assert user.verified is False
    assert user.password_hash != "pw"


@pytest.mark.asyncio
async def test_authenticate(db_session: AsyncSession):
    await account_service.register(
        db_session, RegisterRequest(email="login@example.com", username="login", password="pw")
    )
    user = await account_service.authenticate(db_session, "LOGIN@example.com", "pw")
    assert user.username == "login"

    with pytest.raises(ApiError) as exc_info:
        await account_service.authenticate(db_session, "login@example.com", "nope")
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_update_account_keeps_own_identity(db_session: AsyncSession):
    user = await _create_user(db_session, "steady")
    data = await account_service.update_account(
        db_session, user, AccountUpdate(username="steady", email="STEADY@example.com", bio="hi")
    )
    assert data["username"] == "steady"
    assert data["email"] == "steady@example.com"
    assert data["bio"] == "hi"


@pytest.mark.asyncio
async def test_delete_account_cascade(db_session: AsyncSession):
    doomed = await _create_user(db_session, "doomed")
    other = await _create_user(db_session, "survivor")

    own_comic = await _published(db_session, COMIC, doomed)
    other_story = await _published(db_session, STORY, other)

    # Activity on the doomed user's own resource.
    await rating_service.rate(db_session, own_comic, other, 4)
    await comment_service.add_comment(db_session, own_comic, other, "on doomed comic")
    # Activity by the doomed user elsewhere.
    await rating_service.rate(db_session, other_story, doomed, 5)
    await rating_service.rate(db_session, other_story, other, 3)
    await comment_service.add_comment(db_session, other_story, doomed, "by doomed")
    await comment_service.add_comment(db_session, other_story, other, "by survivor")
    await subscription_service.subscribe(db_session, doomed, other.id)
    await subscription_service.subscribe(db_session, other, doomed.id)

    await account_service.delete_account(db_session, doomed)
    await db_session.flush()

    assert (await db_session.execute(select(User.id).where(User.id == doomed.id))).first() is None
    assert (await db_session.execute(select(Comic.id))).all() == []

    remaining = (await db_session.execute(select(Comment.content))).scalars().all()
    assert remaining == ["by survivor"]

    ratings = (await db_session.execute(select(Rating))).scalars().all()
    assert [(r.user_id, r.resource_id) for r in ratings] == [(other.id, other_story.id)]

    await db_session.refresh(other_story)
    assert other_story.rating_count == 1
    assert other_story.rating_total == 3

    await db_session.refresh(other)
    assert other.subscriber_count == 0
    assert (await db_session.execute(select(subscriptions))).all() == []
    assert (await db_session.execute(select(Story.id))).scalars().all() == [other_story.id]


@pytest.mark.asyncio
async def test_get_profile_lists_owned_resources(db_session: AsyncSession):
    author = await _create_user(db_session, "prolific")
    comic = await resource_service.create_resource(db_session, COMIC, author)
    story = await resource_service.create_resource(db_session, STORY, author)
    other = await _create_user(db_session, "unrelated")
    await resource_service.create_resource(db_session, COMIC, other)

    profile = await account_service.get_profile(db_session, author.id)
    assert profile["comics"] == [comic.id]
    assert profile["stories"] == [story.id]


@pytest.mark.asyncio
async def test_delete_comment_matches_exact_timestamp(db_session: AsyncSession):
    author = await _create_user(db_session, "precise")
    comic = await _published(db_session, COMIC, author)
    created = await comment_service.add_comment(db_session, comic, author, "exact")

    with pytest.raises(ApiError):
        await comment_service.delete_comment(db_session, comic, author, utcnow().isoformat())
    await comment_service.delete_comment(db_session, comic, author, created["created_at"])
    assert await comment_service.list_comments(db_session, COMIC, comic.id) == []
