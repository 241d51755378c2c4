"""Discord bot for Bastion.

Runs alongside FastAPI using the same event loop. Registers the ``/defence``,
``/config``, ``/calls`` and ``/coords`` slash commands and feeds every message
posted in a tracked defence channel to the call manager.

The bot is optional: if DISCORD_BOT_TOKEN is not set, nothing starts, and the
HTTP front door answers 503 for defence requests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord import Intents, app_commands
from discord.ext import commands

from bastion.core.errors import CallRejected
from bastion.discord.embeds import build_active_calls_embed, build_config_embed
from bastion.discord.gateway import DiscordGateway
from bastion.models.defence import CallRequest, DefenceConfig, InboundMessage, Requester

if TYPE_CHECKING:
    from bastion.config import Settings
    from bastion.core.calls import DefenceCallManager
    from bastion.db.store import ConfigStore

logger = logging.getLogger(__name__)

UNAUTHORIZED = (
    "You are not authorized to use this command. / "
    "Δεν έχετε δικαίωμα να χρησιμοποιήσετε αυτή την εντολή."
)
APOLOGY = "❌ Something went wrong while creating the defence call. Please try again."


def _is_admin(user: discord.abc.User) -> bool:
    return isinstance(user, discord.Member) and user.guild_permissions.administrator


def can_request_defence(user: discord.abc.User, config: DefenceConfig | None) -> bool:
    """Administrators always may; everyone else needs one of the command roles."""
    if _is_admin(user):
        return True
    if config is None or not isinstance(user, discord.Member):
        return False
    member_roles = {str(role.id) for role in user.roles}
    return bool(member_roles.intersection(config.command_roles))


class BastionBot(commands.Bot):
    """The Bastion Discord bot.

    Runs in-process with FastAPI. The call manager is attached after
    construction because it needs this bot's gateway adapter.
    """

    def __init__(
        self,
        settings: Settings,
        config_store: ConfigStore | None = None,
    ) -> None:
        intents = Intents.default()
        intents.message_content = True

        super().__init__(
            command_prefix="!",
            intents=intents,
            description="Bastion -- defence call coordinator.",
        )
        self.settings = settings
        self.config_store = config_store
        self.gateway = DiscordGateway(self)
        self.manager: DefenceCallManager | None = None
        self._setup_done: bool = False
        self._setup_commands()

    def _setup_commands(self) -> None:
        """Register slash commands on the bot's command tree."""

        @self.tree.command(name="defence", description="Request a defence call.")
        @app_commands.describe(
            x="X coordinate",
            y="Y coordinate",
            amount="Amount of units needed",
            time="Attack time in BST (format: HH:mm)",
            standing="Standing defence (open for 24 hours, no attack time)",
            crop="Crop needed at the village (opens a second channel)",
        )
        async def defence_command(
            interaction: discord.Interaction,
            x: int,
            y: int,
            amount: app_commands.Range[int, 0],
            time: str | None = None,
            standing: bool = False,
            crop: int | None = None,
        ) -> None:
            if crop is not None and crop < 0:
                await interaction.response.send_message(
                    "❌ The crop amount cannot be negative.", ephemeral=True
                )
                return
            request = CallRequest(
                x=x, y=y, amount=amount, time=time, standing=standing, crop=crop
            )
            await self._handle_defence(interaction, request)

        @self.tree.command(name="coords", description="Get a map link for coordinates")
        @app_commands.describe(x="X coordinate", y="Y coordinate")
        async def coords_command(interaction: discord.Interaction, x: int, y: int) -> None:
            await self._handle_coords(interaction, x, y)

        @self.tree.command(name="calls", description="List open defence calls (admin only)")
        async def calls_command(interaction: discord.Interaction) -> None:
            await self._handle_calls(interaction)

        config_group = app_commands.Group(
            name="config",
            description="Configure defence call settings (admin only)",
            default_permissions=discord.Permissions(administrator=True),
            guild_only=True,
        )

        @config_group.command(name="view", description="View current defence call configuration")
        async def config_view_command(interaction: discord.Interaction) -> None:
            await self._handle_config_view(interaction)

        @config_group.command(name="set", description="Set defence call configuration")
        @app_commands.describe(
            category="Category for defence channels",
            view_role="Role that can see defence channels",
            ping_role="Role pinged for new calls and reminders",
            log_channel="Channel for the defence log",
            initiator_log="Channel recording who opened each call",
            command_role="Role allowed to use /defence",
            crop_category="Category for crop channels (defaults to the defence category)",
        )
        async def config_set_command(
            interaction: discord.Interaction,
            category: discord.CategoryChannel | None = None,
            view_role: discord.Role | None = None,
            ping_role: discord.Role | None = None,
            log_channel: discord.TextChannel | None = None,
            initiator_log: discord.TextChannel | None = None,
            command_role: discord.Role | None = None,
            crop_category: discord.CategoryChannel | None = None,
        ) -> None:
            await self._handle_config_set(
                interaction,
                category=category,
                view_role=view_role,
                ping_role=ping_role,
                log_channel=log_channel,
                initiator_log=initiator_log,
                command_role=command_role,
                crop_category=crop_category,
            )

        self.tree.add_command(config_group)

    async def setup_hook(self) -> None:
        """Called when the bot is ready to start. Syncs slash commands."""
        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("discord_commands_synced guild_id=%s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("discord_commands_synced globally")

    async def on_ready(self) -> None:
        """Called when the bot has connected to Discord.

        on_ready fires on every reconnect, not just the first connection.
        Restoring twice would double every timer, so it runs once.
        """
        user = self.user
        logger.info("discord_bot_ready user=%s", user.name if user else "unknown")
        if self._setup_done or self.manager is None:
            return
        self._setup_done = True
        summary = await self.manager.restore_on_startup()
        logger.info(
            "discord_restore_complete restored=%d removed=%d",
            summary.restored,
            summary.removed,
        )

    async def on_message(self, message: discord.Message) -> None:
        """Route messages in tracked defence channels to the call manager."""
        if message.author.bot or self.manager is None:
            return
        channel_id = str(message.channel.id)
        if not self.manager.tracks(channel_id):
            return
        inbound = InboundMessage(
            content=message.content,
            author_id=str(message.author.id),
            author_name=message.author.display_name,
            author_is_bot=message.author.bot,
        )
        try:
            await self.manager.on_message(channel_id, inbound)
        except Exception:  # Last-resort handler: a bad message must not kill the event handler
            logger.exception("defence_message_failed channel=%s", channel_id)

    # --- Slash command handlers ---

    async def _handle_defence(
        self,
        interaction: discord.Interaction,
        request: CallRequest,
    ) -> None:
        """Handle the /defence slash command."""
        if interaction.guild is None:
            await interaction.response.send_message(
                "`/defence` can only be used inside a Discord server, not in DMs.",
                ephemeral=True,
            )
            return
        if self.manager is None or self.config_store is None:
            await interaction.response.send_message(
                "Defence calls are not available right now. Try again in a moment.",
                ephemeral=True,
            )
            return

        guild_id = str(interaction.guild.id)
        await interaction.response.defer(ephemeral=True)
        try:
            config = await self.config_store.get(guild_id)
            if not can_request_defence(interaction.user, config):
                raise CallRejected("unauthorized", UNAUTHORIZED)
            outcome = await self.manager.create_call(
                guild_id,
                request,
                Requester(
                    user_id=str(interaction.user.id),
                    display_name=interaction.user.display_name,
                    source="command",
                ),
            )
        except CallRejected as exc:
            logger.info(
                "defence_command_rejected reason=%s user=%s", exc.reason, interaction.user.id
            )
            await interaction.followup.send(f"❌ {exc.message}", ephemeral=True)
            return
        except Exception:  # Last-resort handler: the requester gets an apology, not silence
            logger.exception("defence_command_failed user=%s", interaction.user.id)
            await interaction.followup.send(APOLOGY, ephemeral=True)
            return

        reply = f"✅ Created defence channel: {outcome.channel.mention}"
        if outcome.crop_call is not None:
            reply += f"\n✅ Created crop channel: <#{outcome.crop_call.channel_id}>"
        elif request.crop:
            reply += "\n⚠️ The crop channel could not be created."
        await interaction.followup.send(reply, ephemeral=True)

    async def _handle_coords(self, interaction: discord.Interaction, x: int, y: int) -> None:
        """Handle the /coords slash command."""
        link = self.settings.map_link(x, y)
        await interaction.response.send_message(
            f"🌍 Map link for ({x}, {y}) / Σύνδεσμος χάρτη για ({x}, {y}): {link}"
        )

    async def _handle_calls(self, interaction: discord.Interaction) -> None:
        """Handle the /calls slash command (admin only)."""
        if not _is_admin(interaction.user):
            await interaction.response.send_message(f"❌ {UNAUTHORIZED}", ephemeral=True)
            return
        calls = self.manager.active_calls() if self.manager else []
        if interaction.guild is not None:
            calls = [c for c in calls if c.guild_id == str(interaction.guild.id)]
        await interaction.response.send_message(
            embed=build_active_calls_embed(calls), ephemeral=True
        )

    async def _handle_config_view(self, interaction: discord.Interaction) -> None:
        """Handle /config view."""
        if interaction.guild is None or not _is_admin(interaction.user):
            await interaction.response.send_message(f"❌ {UNAUTHORIZED}", ephemeral=True)
            return
        config = None
        if self.config_store is not None:
            config = await self.config_store.get(str(interaction.guild.id))
        if config is None:
            await interaction.response.send_message(
                "❌ No configuration found for this server. Use `/config set` to configure.",
                ephemeral=True,
            )
            return
        await interaction.response.send_message(embed=build_config_embed(config), ephemeral=True)

    async def _handle_config_set(
        self,
        interaction: discord.Interaction,
        *,
        category: discord.abc.Snowflake | None = None,
        view_role: discord.abc.Snowflake | None = None,
        ping_role: discord.abc.Snowflake | None = None,
        log_channel: discord.abc.Snowflake | None = None,
        initiator_log: discord.abc.Snowflake | None = None,
        command_role: discord.abc.Snowflake | None = None,
        crop_category: discord.abc.Snowflake | None = None,
    ) -> None:
        """Handle /config set. Omitted options keep their stored value."""
        if interaction.guild is None or not _is_admin(interaction.user):
            await interaction.response.send_message(f"❌ {UNAUTHORIZED}", ephemeral=True)
            return
        if self.config_store is None:
            await interaction.response.send_message(
                "The configuration database is unavailable.", ephemeral=True
            )
            return

        def _id(obj: discord.abc.Snowflake | None) -> str | None:
            return str(obj.id) if obj is not None else None

        def _ids(obj: discord.abc.Snowflake | None) -> list[str] | None:
            return [str(obj.id)] if obj is not None else None

        try:
            config = await self.config_store.update(
                str(interaction.guild.id),
                parent_category=_id(category),
                crop_category=_id(crop_category),
                view_roles=_ids(view_role),
                ping_roles=_ids(ping_role),
                command_roles=_ids(command_role),
                log_channel=_id(log_channel),
                initiator_log_channel=_id(initiator_log),
            )
        except ValueError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return
        await interaction.response.send_message(
            "✅ Defence call configuration updated.",
            embed=build_config_embed(config),
            ephemeral=True,
        )


def is_discord_enabled(settings: Settings) -> bool:
    """Check whether Discord integration should be started.

    Returns True only when discord_enabled is True, a token is set, AND the
    environment is not development, so a local server never joins the live
    community and starts creating channels.
    """
    if settings.bastion_env == "development":
        logger.info("discord_bot_skipped_in_development")
        return False
    return bool(settings.discord_enabled and settings.discord_bot_token)


async def start_discord_bot(bot: BastionBot) -> asyncio.Task[None]:
    """Start *bot* as a background task in the current event loop.

    Returns the running task immediately. The caller holds on to it and
    cancels it on shutdown if closing the bot did not end it.
    """

    async def _run_bot() -> None:
        try:
            await bot.start(bot.settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # Last-resort handler: bot.start can raise connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                await bot.close()

    task = asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return task
