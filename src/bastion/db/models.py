"""SQLAlchemy ORM models for the Bastion config store."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class GuildConfigRow(Base):
    """Per-community defence settings, written by ``/config set``.

    Role lists are stored as JSON arrays of snowflake strings.
    """

    __tablename__ = "guild_configs"

    guild_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    parent_category: Mapped[str] = mapped_column(String(32), nullable=False)
    crop_category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    view_roles: Mapped[list] = mapped_column(JSON, default=list)
    ping_roles: Mapped[list] = mapped_column(JSON, default=list)
    command_roles: Mapped[list] = mapped_column(JSON, default=list)
    log_channel: Mapped[str | None] = mapped_column(String(32), nullable=True)
    initiator_log_channel: Mapped[str | None] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
