"""Repository pattern for config store access."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from bastion.db.models import GuildConfigRow
from bastion.models.defence import DefenceConfig


def _to_config(row: GuildConfigRow) -> DefenceConfig:
    return DefenceConfig(
        parent_category=row.parent_category,
        crop_category=row.crop_category,
        view_roles=list(row.view_roles or []),
        ping_roles=list(row.ping_roles or []),
        command_roles=list(row.command_roles or []),
        log_channel=row.log_channel,
        initiator_log_channel=row.initiator_log_channel,
    )


class Repository:
    """Async repository for guild configuration."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_defence_config(self, guild_id: str) -> DefenceConfig | None:
        """Return the guild's config, or None if ``/config set`` was never run."""
        row = await self.session.get(GuildConfigRow, guild_id)
        return _to_config(row) if row else None

    async def set_defence_config(self, guild_id: str, config: DefenceConfig) -> DefenceConfig:
        """Upsert the guild's config."""
        row = await self.session.get(GuildConfigRow, guild_id)
        if row is None:
            row = GuildConfigRow(guild_id=guild_id)
            self.session.add(row)
        row.parent_category = config.parent_category
        row.crop_category = config.crop_category
        row.view_roles = list(config.view_roles)
        row.ping_roles = list(config.ping_roles)
        row.command_roles = list(config.command_roles)
        row.log_channel = config.log_channel
        row.initiator_log_channel = config.initiator_log_channel
        await self.session.flush()
        return _to_config(row)
