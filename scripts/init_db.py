"""Script to initialize the database without running migrations."""

import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from dental_scheduler.database import engine
from dental_scheduler.models import metadata

REQUIRED_EXTENSIONS = ("pgcrypto", "btree_gist")


async def init_db(target: AsyncEngine = engine) -> None:
    """Create the required extensions and all scheduling tables."""
    async with target.begin() as conn:
        for extension in REQUIRED_EXTENSIONS:
            await conn.execute(text(f'CREATE EXTENSION IF NOT EXISTS "{extension}"'))

        # Create all tables
        await conn.run_sync(metadata.create_all)

    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
