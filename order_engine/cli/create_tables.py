# order_engine/cli/create_tables.py
import asyncio

import click
from sqlalchemy.ext.asyncio import create_async_engine

from order_engine.database import Base

# Import all models to ensure they're registered with the Base
from order_engine import models  # noqa: F401


@click.command()
@click.option("--echo/--no-echo", default=False, help="Echo the generated DDL")
def create_tables(echo):
    """Create all database tables directly using SQLAlchemy"""
    from order_engine.core.config import get_settings
    settings = get_settings()

    async def _create_tables():
        engine = create_async_engine(settings.DATABASE_URL, echo=echo)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()
        click.echo("All tables created successfully!")

    asyncio.run(_create_tables())


if __name__ == "__main__":
    create_tables()
