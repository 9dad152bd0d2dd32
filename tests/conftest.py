"""pytest fixtures for asset registry tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance
- session: Function-scoped database session with table truncation
- uow_factory: Function-scoped UnitOfWork factory

Database fixtures require Docker; tests using them error out without it.
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import AsyncGenerator

# Settings validation is relaxed for tests; must be set before the app is imported
os.environ.setdefault("APP_ENV", "test")

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer

from asset_registry.core.database import setup_db_session
from asset_registry.uow import create_uow_factory

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_asset_registry",
    ).with_bind_ports(5432, None) as container:
        db_url = container.get_connection_url(driver="psycopg")

        # Set DATABASE_URL environment variable for alembic env.py
        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table truncation.

    Each test gets a fresh session with empty tables (truncated between tests).
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes from the test
        await session.rollback()

        await session.execute(text("DELETE FROM ownership_transfers"))
        await session.execute(text("DELETE FROM asset_registrations"))
        await session.execute(text("DELETE FROM system_state"))
        await session.commit()

    await session.bind.dispose()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session: AsyncSession):
    """Provide function-scoped UnitOfWork factory.

    Returns a callable that creates UoW instances bound to the test database.
    """
    session_factory = async_sessionmaker(
        bind=session.bind,
        expire_on_commit=False,
    )
    return create_uow_factory(session_factory)
