"""Database seeder for local development and demos.

All writes go through the service layer so ratings, subscriber counters
and ledgers stay consistent with each other.
"""
import argparse
import asyncio
import random
import time

from zomp.database import Base, async_session, engine
from zomp.models import COMIC, STORY, User
from zomp.schemas import ResourceFields
from zomp.security import hash_password
from zomp.services import comment_service, rating_service, resource_service, subscription_service

GENRES = ["fantasy", "sci-fi", "noir", "romance", "horror", "slice-of-life",
          "mystery", "adventure", "comedy", "drama", "western", "cyberpunk"]

COMMENTS = ["Loved this!", "The art style is fantastic.", "Can't wait for the next chapter.",
            "That twist at the end...", "Beautiful pacing.", "More please!"]

SEED_PASSWORD = "password"


async def seed(small: bool = False):
    num_users = 10 if small else 50
    per_author = 2 if small else 6
    max_ratings = 3 if small else 15
    max_comments = 2 if small else 5

    print(f"Seeding: {num_users} users, ~{num_users * per_author * 2} comics and stories")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Every seeded account shares one hash.
    password_hash = hash_password(SEED_PASSWORD)

    async with async_session() as session:
        users = []
        for i in range(num_users):
            user = User(
                username=f"user_{i:04d}",
                email=f"user_{i:04d}@example.com",
                password_hash=password_hash,
                verified=True,
                bio=f"I am test user number {i}. I draw and write.",
            )
            session.add(user)
            users.append(user)
        await session.flush()
        print(f"  Created {len(users)} users (password: {SEED_PASSWORD!r})")

        published = []
        drafts = 0
        for author in users:
            for kind in (COMIC, STORY):
                for n in range(per_author):
                    genre = random.choice(GENRES)
                    resource = await resource_service.create_resource(session, kind, author)
                    await resource_service.update_resource(session, resource, ResourceFields(
                        title=f"{author.username}'s {genre} {kind} #{n + 1}",
                        description=f"A {genre} {kind}.",
                        content=f"Once upon a time, in a {genre} world... " * 10,
                        tags=random.sample(GENRES, k=random.randint(1, 3)),
                    ))
                    if random.random() > 0.2:
                        await resource_service.publish(session, resource)
                        published.append(resource)
                    else:
                        drafts += 1
        print(f"  Created {len(published)} published and {drafts} draft resources")

        edges = 0
        for user in users:
            for target in random.sample(users, k=random.randint(0, min(5, num_users))):
                await subscription_service.subscribe(session, user, target.id)
                edges += 1
        print(f"  Created {edges} subscriptions")

        ratings = comments = 0
        for resource in published:
            for rater in random.sample(users, k=random.randint(0, max_ratings)):
                await rating_service.rate(session, resource, rater, random.randint(0, 10) / 2)
                ratings += 1
            for _ in range(random.randint(0, max_comments)):
                await comment_service.add_comment(
                    session, resource, random.choice(users), random.choice(COMMENTS)
                )
                comments += 1
        print(f"  Created {ratings} ratings and {comments} comments")

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")


def main():
    parser = argparse.ArgumentParser(description="Seed the Zomp database")
    parser.add_argument("--small", action="store_true", help="Use a small dataset")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
