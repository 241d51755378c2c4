"""Chat platform port used by the call engine.

The engine never imports discord.py; it talks to the platform through this
protocol. ``bastion.discord.gateway.DiscordGateway`` is the production
implementation. Implementations raise :class:`~bastion.core.errors.GatewayError`
on platform failures.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class CreatedChannel:
    id: str
    name: str

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"


class ChatGateway(Protocol):
    """Channel and message operations the engine needs from the platform."""

    async def create_channel(
        self,
        guild_id: str,
        name: str,
        *,
        parent_id: str | None,
        view_roles: Sequence[str],
    ) -> CreatedChannel:
        """Create a text channel hidden from the default role and open to *view_roles*."""
        ...

    async def delete_channel(self, channel_id: str, reason: str | None = None) -> None: ...

    async def set_permission(
        self,
        channel_id: str,
        role_id: str,
        *,
        send_messages: bool,
    ) -> None: ...

    async def send_message(
        self,
        channel_id: str,
        content: str,
        *,
        mention_roles: Sequence[str] = (),
    ) -> None: ...


def role_mentions(role_ids: Sequence[str]) -> str:
    return " ".join(f"<@&{role_id}>" for role_id in role_ids)
