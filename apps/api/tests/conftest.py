import os

# The app engine is built at import time; keep it off the production database.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUDIT_USE_QUEUE"] = "false"
os.environ.setdefault("YOUTUBE_API_KEY", "test-key")
os.environ["OPENAI_API_KEY"] = ""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
import models  # noqa: F401
from services import channel_cache
from fakes import FakeYouTube


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    db_path = tmp_path / "channel_audit.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield session_maker
    await engine.dispose()


@pytest.fixture
def youtube():
    return FakeYouTube()


@pytest.fixture(autouse=True)
def reset_channel_locks():
    """Per-channel locks are bound to the event loop that created them."""
    channel_cache._channel_locks.clear()
    yield
    channel_cache._channel_locks.clear()
