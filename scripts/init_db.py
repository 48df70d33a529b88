"""Create the scheduling tables directly, without migrations.

For local development only; deployed databases are managed with alembic.
"""

import asyncio
import sys

from medischeduler.database import engine
from medischeduler.models import metadata


async def init_db(reset: bool = False) -> None:
    """Create all tables, optionally dropping existing ones first."""
    async with engine.begin() as conn:
        if reset:
            await conn.run_sync(metadata.drop_all)
            print("✓ Dropped existing tables")

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print(f"✓ Created tables: {', '.join(sorted(metadata.tables))}")


if __name__ == "__main__":
    asyncio.run(init_db(reset="--reset" in sys.argv[1:]))
