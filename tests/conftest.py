"""Shared test fixtures.

The call engine is exercised against an in-memory gateway and a scheduler that
is never started: jobs stay pending, can be inspected by id, and are fired by
awaiting their callable directly.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from bastion.config import Settings
from bastion.core.calls import DefenceCallManager
from bastion.core.directory import VillageDirectory
from bastion.core.errors import GatewayError
from bastion.core.gateway import CreatedChannel
from bastion.core.ledger import SubmissionLedger
from bastion.core.registry import ChannelRegistry
from bastion.core.timers import CallTimers
from bastion.models.defence import DefenceConfig

GUILD_ID = "1000"
START = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    """Records every platform call; failures are switched on per test."""

    def __init__(self) -> None:
        self.created: list[tuple[str, str, str | None, list[str]]] = []
        self.deleted: list[str] = []
        self.permissions: list[tuple[str, str, bool]] = []
        self.sent: list[tuple[str, str, list[str]]] = []
        self.fail_create_prefix: str | None = None
        self.fail_send_to: set[str] = set()
        self.fail_delete = False
        self._next_id = 5000

    async def create_channel(
        self,
        guild_id: str,
        name: str,
        *,
        parent_id: str | None,
        view_roles: Sequence[str],
    ) -> CreatedChannel:
        if self.fail_create_prefix is not None and name.startswith(self.fail_create_prefix):
            raise GatewayError(f"cannot create {name}")
        self._next_id += 1
        self.created.append((guild_id, name, parent_id, list(view_roles)))
        return CreatedChannel(id=str(self._next_id), name=name)

    async def delete_channel(self, channel_id: str, reason: str | None = None) -> None:
        if self.fail_delete:
            raise GatewayError(f"cannot delete {channel_id}")
        self.deleted.append(channel_id)

    async def set_permission(self, channel_id: str, role_id: str, *, send_messages: bool) -> None:
        self.permissions.append((channel_id, role_id, send_messages))

    async def send_message(
        self,
        channel_id: str,
        content: str,
        *,
        mention_roles: Sequence[str] = (),
    ) -> None:
        if channel_id in self.fail_send_to:
            raise GatewayError(f"cannot send to {channel_id}")
        self.sent.append((channel_id, content, list(mention_roles)))

    def messages_to(self, channel_id: str) -> list[str]:
        return [content for cid, content, _ in self.sent if cid == channel_id]


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings with defaults; JSON documents live in tmp_path."""
    return Settings(
        bastion_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        bastion_data_dir=str(tmp_path),
        discord_guild_id=GUILD_ID,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def scheduler() -> AsyncIOScheduler:
    """A scheduler that is never started; its jobs stay pending."""
    return AsyncIOScheduler(timezone=UTC)


@pytest.fixture
def defence_config() -> DefenceConfig:
    return DefenceConfig(
        parent_category="500",
        view_roles=["601"],
        ping_roles=["602"],
        log_channel="700",
        initiator_log_channel="701",
        command_roles=["603"],
    )


@pytest.fixture
def directory() -> VillageDirectory:
    return VillageDirectory()


@pytest.fixture
def make_manager(
    settings: Settings,
    gateway: FakeGateway,
    clock: FakeClock,
    defence_config: DefenceConfig,
    directory: VillageDirectory,
) -> Callable[..., DefenceCallManager]:
    """Build managers sharing the same JSON documents, as successive processes would."""

    async def lookup(guild_id: str) -> DefenceConfig | None:
        return defence_config if guild_id == GUILD_ID else None

    def _make(scheduler: AsyncIOScheduler, **overrides: object) -> DefenceCallManager:
        kwargs: dict[str, object] = {
            "gateway": gateway,
            "registry": ChannelRegistry(settings.registry_path),
            "ledger": SubmissionLedger(settings.ledger_path),
            "timers": CallTimers(scheduler),
            "config_lookup": lookup,
            "directory": directory,
            "map_link": settings.map_link,
            "clock": clock,
        }
        kwargs.update(overrides)
        return DefenceCallManager(**kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def manager(make_manager, scheduler: AsyncIOScheduler) -> DefenceCallManager:
    return make_manager(scheduler)


@pytest.fixture
def fire(scheduler: AsyncIOScheduler) -> Callable[[str], Awaitable[None]]:
    """Run a pending timer job now, as the scheduler would at its due time."""

    async def _fire(job_id: str, on: AsyncIOScheduler | None = None) -> None:
        job = (on or scheduler).get_job(job_id)
        assert job is not None, f"no pending job {job_id}"
        await job.func(*job.args, **job.kwargs)

    return _fire
