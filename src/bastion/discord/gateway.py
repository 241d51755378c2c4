"""discord.py implementation of the engine's ``ChatGateway`` port."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import discord

from bastion.core.errors import GatewayError
from bastion.core.gateway import CreatedChannel

logger = logging.getLogger(__name__)


class DiscordGateway:
    """Wraps a connected ``discord.Client``. Platform errors become ``GatewayError``."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def _guild(self, guild_id: str) -> discord.Guild:
        guild = self.client.get_guild(int(guild_id))
        if guild is not None:
            return guild
        try:
            return await self.client.fetch_guild(int(guild_id))
        except discord.HTTPException as exc:
            raise GatewayError(f"guild {guild_id} is not reachable") from exc

    async def _channel(self, channel_id: str) -> discord.abc.GuildChannel:
        channel = self.client.get_channel(int(channel_id))
        if channel is not None:
            return channel  # type: ignore[return-value]
        try:
            return await self.client.fetch_channel(int(channel_id))  # type: ignore[return-value]
        except discord.HTTPException as exc:
            raise GatewayError(f"channel {channel_id} is not reachable") from exc

    async def create_channel(
        self,
        guild_id: str,
        name: str,
        *,
        parent_id: str | None,
        view_roles: Sequence[str],
    ) -> CreatedChannel:
        guild = await self._guild(guild_id)
        overwrites: dict[discord.abc.Snowflake, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
        }
        for role_id in view_roles:
            role = guild.get_role(int(role_id))
            if role is None:
                logger.warning("discord_view_role_missing guild=%s role=%s", guild_id, role_id)
                continue
            overwrites[role] = discord.PermissionOverwrite(
                view_channel=True, send_messages=True, read_message_history=True
            )
        category = guild.get_channel(int(parent_id)) if parent_id else None
        if category is not None and not isinstance(category, discord.CategoryChannel):
            category = None
        try:
            channel = await guild.create_text_channel(
                name, category=category, overwrites=overwrites, reason="Defence call"
            )
        except discord.HTTPException as exc:
            raise GatewayError(f"could not create channel {name}") from exc
        return CreatedChannel(id=str(channel.id), name=channel.name)

    async def delete_channel(self, channel_id: str, reason: str | None = None) -> None:
        channel = await self._channel(channel_id)
        try:
            await channel.delete(reason=reason)
        except discord.HTTPException as exc:
            raise GatewayError(f"could not delete channel {channel_id}") from exc

    async def set_permission(
        self,
        channel_id: str,
        role_id: str,
        *,
        send_messages: bool,
    ) -> None:
        channel = await self._channel(channel_id)
        role = channel.guild.get_role(int(role_id)) or discord.Object(id=int(role_id))
        try:
            await channel.set_permissions(role, send_messages=send_messages)
        except discord.HTTPException as exc:
            raise GatewayError(f"could not update permissions on {channel_id}") from exc

    async def send_message(
        self,
        channel_id: str,
        content: str,
        *,
        mention_roles: Sequence[str] = (),
    ) -> None:
        channel = await self._channel(channel_id)
        allowed = None
        if mention_roles:
            allowed = discord.AllowedMentions(
                everyone=False,
                users=True,
                roles=[discord.Object(id=int(role_id)) for role_id in mention_roles],
            )
        try:
            await channel.send(content, allowed_mentions=allowed)  # type: ignore[union-attr]
        except discord.HTTPException as exc:
            raise GatewayError(f"could not send to {channel_id}") from exc
