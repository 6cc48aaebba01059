import asyncio
import uuid
from datetime import datetime, timezone

from leaderboard.database import engine, Base, async_session
from leaderboard.elo import INITIAL_RATING
from leaderboard.models import Player

DEMO_NAMES = ["Alice", "Bob", "Charlie"]


async def drop_and_recreate_all_tables():
    async with engine.begin() as conn:
        print("⚠️ Dropping all tables...")
        await conn.run_sync(Base.metadata.drop_all)
        print("✅ All tables dropped.")

        print("🔁 Recreating all tables...")
        await conn.run_sync(Base.metadata.create_all)
        print("✅ Tables recreated.")

    # 👇 Insert demo players after tables are created
    async with async_session() as session:
        print("👤 Adding demo players...")
        for name in DEMO_NAMES:
            # No games yet, so the stored rating equals what a replay would give
            session.add(Player(
                id=str(uuid.uuid4()),
                name=name,
                rating=INITIAL_RATING,
                wins=0,
                losses=0,
                draws=0,
                games_played=0,
                version=0,
                created_at=datetime.now(timezone.utc),
            ))
        await session.commit()
        print("✅ Demo players inserted.")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(drop_and_recreate_all_tables())
