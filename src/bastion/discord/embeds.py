"""Discord embed builders for Bastion."""

from __future__ import annotations

import discord

from bastion.models.defence import DefenceCall, DefenceConfig

COLOR_CONFIG = 0x00AE86  # Teal, configuration
COLOR_DEFENCE = 0xE74C3C  # Red, active calls

_NOT_SET = "Not set"


def _channel(channel_id: str | None) -> str:
    return f"<#{channel_id}>" if channel_id else _NOT_SET


def _roles(role_ids: list[str]) -> str:
    return "\n".join(f"<@&{role_id}>" for role_id in role_ids) or _NOT_SET


def build_config_embed(config: DefenceConfig) -> discord.Embed:
    """Summarize a community's defence configuration for ``/config view``."""
    embed = discord.Embed(title="🛡️ Defence Call Configuration", color=COLOR_CONFIG)
    embed.add_field(name="Category", value=_channel(config.parent_category), inline=True)
    embed.add_field(name="Crop Category", value=_channel(config.crop_category), inline=True)
    embed.add_field(name="View Roles", value=_roles(config.view_roles), inline=True)
    embed.add_field(name="Ping Roles", value=_roles(config.ping_roles), inline=True)
    embed.add_field(name="Command Roles", value=_roles(config.command_roles), inline=True)
    embed.add_field(name="Log Channel", value=_channel(config.log_channel), inline=True)
    embed.add_field(
        name="Initiator Log", value=_channel(config.initiator_log_channel), inline=True
    )
    return embed


def build_active_calls_embed(calls: list[DefenceCall]) -> discord.Embed:
    """List the calls the registry is tracking, newest first."""
    embed = discord.Embed(title="Active Defence Calls", color=COLOR_DEFENCE)
    if not calls:
        embed.description = "No defence calls are open."
        return embed
    lines = []
    for call in sorted(calls, key=lambda c: c.created_at, reverse=True)[:20]:
        where = f"({call.coordinates.x}, {call.coordinates.y})"
        deadline = f" at {call.deadline_label}" if call.deadline_label else ""
        lines.append(
            f"<#{call.channel_id}> {call.kind} {where} "
            f"**{call.requested_amount}**{deadline} [{call.status}]"
        )
    embed.description = "\n".join(lines)
    return embed
