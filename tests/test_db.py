"""Tests for the config store: engine, ORM model, repository and ConfigStore."""

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from bastion.db.engine import create_engine, get_session, init_schema
from bastion.db.repository import Repository
from bastion.db.store import ConfigStore
from bastion.models.defence import DefenceConfig


@pytest.fixture
async def engine() -> AsyncEngine:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await init_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> Repository:
    async with get_session(engine) as session:
        yield Repository(session)


class TestTableCreation:
    async def test_guild_configs_created(self, engine: AsyncEngine):
        async with engine.connect() as conn:
            tables = await conn.run_sync(
                lambda sync_conn: sync_conn.dialect.get_table_names(sync_conn)
            )
        assert "guild_configs" in tables


class TestRepository:
    async def test_unconfigured_guild(self, repo: Repository):
        assert await repo.get_defence_config("1000") is None

    async def test_set_and_get(self, repo: Repository):
        config = DefenceConfig(
            parent_category="500",
            view_roles=["601", "604"],
            ping_roles=["602"],
            log_channel="700",
        )
        await repo.set_defence_config("1000", config)
        loaded = await repo.get_defence_config("1000")
        assert loaded == config

    async def test_set_overwrites(self, repo: Repository):
        await repo.set_defence_config("1000", DefenceConfig(parent_category="500"))
        await repo.set_defence_config("1000", DefenceConfig(parent_category="501"))
        loaded = await repo.get_defence_config("1000")
        assert loaded.parent_category == "501"


class TestConfigStore:
    async def test_first_set_requires_category(self, engine: AsyncEngine):
        store = ConfigStore(engine)
        with pytest.raises(ValueError, match="category"):
            await store.update("1000", view_roles=["601"])
        assert await store.get("1000") is None

    async def test_update_merges_and_ignores_none(self, engine: AsyncEngine):
        store = ConfigStore(engine)
        await store.update("1000", parent_category="500", view_roles=["601"])
        updated = await store.update("1000", ping_roles=["602"], view_roles=None)
        assert updated.parent_category == "500"
        assert updated.view_roles == ["601"]
        assert updated.ping_roles == ["602"]
        assert await store.get("1000") == updated

    async def test_guilds_are_separate(self, engine: AsyncEngine):
        store = ConfigStore(engine)
        await store.update("1000", parent_category="500")
        assert await store.get("2000") is None
