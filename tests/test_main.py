"""Tests for application wiring: the call manager factory and the lifespan."""

from __future__ import annotations

import asyncio
from datetime import UTC
from unittest.mock import AsyncMock, patch

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from bastion.config import Settings
from bastion.discord.bot import BastionBot
from bastion.main import build_call_manager, create_app, lifespan
from bastion.models.defence import CallRequest, Requester


class TestBuildCallManager:
    async def test_state_is_read_before_restore(
        self, settings, gateway, manager, defence_config
    ) -> None:
        outcome = await manager.create_call(
            "1000",
            CallRequest(x=10, y=20, amount=5000, time="18:00"),
            Requester(user_id="42", display_name="Leonidas"),
        )
        cid = outcome.call.channel_id

        async def lookup(guild_id: str):
            return defence_config

        rebuilt = build_call_manager(
            settings, gateway, AsyncIOScheduler(timezone=UTC), lookup
        )
        assert rebuilt.tracks(cid)
        # Listeners and timers wait for restore_on_startup.
        assert not rebuilt.is_listening(cid)
        assert rebuilt.timers.pending(cid) == []


class TestLifespan:
    async def test_bot_task_is_kept_and_stopped(self, tmp_path) -> None:
        settings = Settings(
            bastion_env="production",
            database_url="sqlite+aiosqlite:///:memory:",
            bastion_data_dir=str(tmp_path),
            bastion_map_sql_url="",
            discord_bot_token="test-token-not-real",
            discord_guild_id="1000",
            discord_enabled=True,
        )
        app = create_app(settings)
        connected = asyncio.Event()

        async def hang(self, token: str) -> None:
            connected.set()
            await asyncio.Event().wait()

        with (
            patch.object(BastionBot, "start", hang),
            patch.object(BastionBot, "close", new_callable=AsyncMock),
        ):
            async with lifespan(app):
                await asyncio.wait_for(connected.wait(), timeout=1)
                task = app.state.discord_task
                assert not task.done()
                assert app.state.defence_manager is app.state.discord_bot.manager
            assert task.done()
