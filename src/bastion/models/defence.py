"""Defence call models: calls, pledged submissions, community config.

A defence call lives in its own channel; the channel id is the call's identity.
Records round-trip through the JSON documents on disk, so every field must
serialize with ``model_dump(mode="json")``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

CallKind = Literal["normal", "standing", "crop"]

CallStatus = Literal["open", "completed", "locked"]

MessageOrigin = Literal["initial", "response"]


class Coordinates(BaseModel):
    x: int
    y: int


class ChannelMessage(BaseModel):
    """One entry in a call's message log."""

    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    origin: MessageOrigin = "response"


class DefenceCall(BaseModel):
    """A live defence call, one per channel id."""

    channel_id: str
    guild_id: str
    channel_name: str = ""
    kind: CallKind = "normal"
    status: CallStatus = "open"
    requested_amount: int = Field(ge=0)
    coordinates: Coordinates
    attack_time: datetime | None = None
    deadline_label: str | None = None  # The HH:mm the requester typed
    created_at: datetime
    expires_at: datetime
    view_roles: list[str] = Field(default_factory=list)
    ping_roles: list[str] = Field(default_factory=list)
    requested_by: str = ""
    messages: list[ChannelMessage] = Field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status == "open"


class Submission(BaseModel):
    """A matched pledge recorded against an open call."""

    channel_id: str
    units: int
    declared_time: str | None = None
    user_id: str
    display_name: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    coordinates: Coordinates
    kind: CallKind = "normal"


class DefenceConfig(BaseModel):
    """Per-community defence settings. Read-only to the call engine."""

    parent_category: str
    view_roles: list[str] = Field(default_factory=list)
    ping_roles: list[str] = Field(default_factory=list)
    log_channel: str | None = None
    initiator_log_channel: str | None = None
    command_roles: list[str] = Field(default_factory=list)
    crop_category: str | None = None


class CallRequest(BaseModel):
    """A request to open a defence call, from a slash command or HTTP."""

    x: int
    y: int
    amount: int = Field(ge=0)
    time: str | None = None
    standing: bool = False
    crop: int | None = Field(default=None, ge=0)


class Requester(BaseModel):
    """Who asked for the call. ``user_id`` is None for HTTP requests."""

    user_id: str | None = None
    display_name: str = "API Request"
    source: Literal["command", "api"] = "command"


class InboundMessage(BaseModel):
    """A chat message delivered to a tracked channel."""

    content: str
    author_id: str
    author_name: str
    author_is_bot: bool = False


class Village(BaseModel):
    """A directory entry from the game world map dump."""

    x: int
    y: int
    village_name: str
    player_name: str = ""
    tribe: int = 0
    is_capital: bool = False
