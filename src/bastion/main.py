"""FastAPI application factory."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from fastapi import FastAPI

from bastion.api.defence import router as defence_router
from bastion.api.ratelimit import SlidingWindowRateLimiter
from bastion.config import Settings
from bastion.core.calls import ConfigLookup, DefenceCallManager
from bastion.core.directory import VillageDirectory
from bastion.core.gateway import ChatGateway
from bastion.core.ledger import SubmissionLedger
from bastion.core.registry import ChannelRegistry
from bastion.core.timers import CallTimers
from bastion.db.engine import create_engine, init_schema
from bastion.db.store import ConfigStore

logger = logging.getLogger(__name__)


def build_call_manager(
    settings: Settings,
    gateway: ChatGateway,
    scheduler: AsyncIOScheduler,
    config_lookup: ConfigLookup,
    directory: VillageDirectory | None = None,
) -> DefenceCallManager:
    """Wire the call engine to its stores, timers and the chat gateway.

    The registry and ledger are read here, before the manager is reachable
    from the HTTP route or the bot. Listeners and timers come back later, in
    ``restore_on_startup``.
    """
    manager = DefenceCallManager(
        gateway=gateway,
        registry=ChannelRegistry(settings.registry_path),
        ledger=SubmissionLedger(settings.ledger_path),
        timers=CallTimers(scheduler),
        config_lookup=config_lookup,
        directory=directory,
        map_link=settings.map_link,
        utc_offset_hours=settings.bastion_deadline_utc_offset_hours,
        zone_label=settings.bastion_deadline_zone_label,
        restore_reminders=settings.bastion_restore_reminders,
    )
    loaded = manager.load_state()
    logger.info("defence_state_loaded calls=%d", loaded)
    return manager


def schedule_directory_refresh(
    scheduler: AsyncIOScheduler,
    directory: VillageDirectory,
    settings: Settings,
) -> None:
    """Download the map shortly after startup, then on the refresh cron (UTC)."""
    first_run = datetime.now(UTC) + timedelta(
        seconds=settings.bastion_directory_initial_delay_seconds
    )
    scheduler.add_job(
        directory.refresh,
        trigger=DateTrigger(run_date=first_run),
        id="directory_initial_refresh",
        name="Initial village directory download",
        replace_existing=True,
    )
    scheduler.add_job(
        directory.refresh,
        trigger=CronTrigger.from_crontab(settings.bastion_directory_refresh_cron, timezone=UTC),
        id="directory_refresh",
        name="Daily village directory refresh",
        replace_existing=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: config store, scheduler, directory, then the Discord bot and call engine."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    await init_schema(engine)
    config_store = ConfigStore(engine)
    app.state.engine = engine
    app.state.config_store = config_store

    scheduler = AsyncIOScheduler(timezone=UTC)
    directory = VillageDirectory(settings.bastion_map_sql_url)
    if settings.bastion_map_sql_url:
        schedule_directory_refresh(scheduler, directory, settings)
    scheduler.start()
    app.state.scheduler = scheduler
    app.state.directory = directory
    logger.info("scheduler_started cron=%s", settings.bastion_directory_refresh_cron)

    discord_bot = None
    from bastion.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from bastion.discord.bot import BastionBot, start_discord_bot

        discord_bot = BastionBot(settings=settings, config_store=config_store)
        manager = build_call_manager(
            settings, discord_bot.gateway, scheduler, config_store.get, directory
        )
        discord_bot.manager = manager
        app.state.defence_manager = manager
        app.state.discord_bot = discord_bot
        app.state.discord_task = await start_discord_bot(discord_bot)
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")

    yield

    scheduler.shutdown(wait=False)
    logger.info("scheduler_stopped")

    if discord_bot is not None:
        await discord_bot.close()
        task = app.state.discord_task
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("discord_bot_integration_stopped")

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the Bastion FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.bastion_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Bastion",
        version="0.1.0",
        description="Defence call coordination for a Discord game community",
        docs_url="/docs" if settings.bastion_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.defence_manager = None
    app.state.rate_limiter = SlidingWindowRateLimiter(
        max_requests=settings.bastion_rate_limit_requests,
        window_seconds=settings.bastion_rate_limit_window_seconds,
    )

    app.include_router(defence_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.bastion_env}

    return app


app = create_app()
