# tests/conftest.py

import gc
import os
from collections.abc import AsyncIterator

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

# Point the app code (Rehome.db.get_engine) at a test database before any app
# module is imported. Default to an in-memory DB; a file-backed SQLite can be
# selected for debugging the schema after a failing run.
if os.environ.get("REHOME_TEST_USE_FILE_SQLITE") == "1":
    test_db_path = os.path.abspath(
        os.environ.get("REHOME_TEST_DB_PATH", "./rehome_test.sqlite3")
    )
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"
else:
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

# One shared connection so concurrent row tasks and the test see the same DB
os.environ.setdefault("REHOME_SQLITE_STATIC_POOL", "1")

# config.toml or .env may name another database; the module constant wins,
# so override it before any engine is created.
import Rehome.db as _db  # noqa: E402

_db.DATABASE_URL = os.environ["DATABASE_URL"]
_db._engine = None
_db._sessionmaker = None

# Register every ORM table on Base.metadata before create_all
from Rehome import models as _models  # noqa: F401,E402
from Rehome.db import Base, get_engine, get_sessionmaker, reset_engine  # noqa: E402
from Rehome.metrics import reset_counters  # noqa: E402


# Each test gets a fresh schema on a fresh engine. The engine is disposed
# afterwards so no aiosqlite connection outlives the event loop it was made on.
@pytest.fixture(autouse=True)
async def _fresh_db() -> AsyncIterator[None]:
    if os.environ.get("REHOME_TEST_SKIP_DB") == "1":
        yield None
        return
    engine = get_engine()
    async with engine.begin() as conn:
        is_sqlite = conn.dialect.name == "sqlite"
        if is_sqlite:
            await conn.execute(sa.text("PRAGMA foreign_keys=OFF"))
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        if is_sqlite:
            await conn.execute(sa.text("PRAGMA foreign_keys=ON"))
    try:
        yield None
    finally:
        await reset_engine()
        gc.collect()


@pytest.fixture(autouse=True)
def _clean_counters():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
async def db() -> AsyncIterator[AsyncSession]:
    sm = get_sessionmaker()
    async with sm() as s:
        try:
            yield s
        finally:
            # Release the shared aiosqlite connection
            await s.rollback()
            await s.close()
