"""Config store: the session-per-call façade the bot and HTTP layer use.

``ConfigStore.get`` is handed to the call manager as its ``config_lookup``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from bastion.db.engine import get_session
from bastion.db.repository import Repository
from bastion.models.defence import DefenceConfig

logger = logging.getLogger(__name__)


class ConfigStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def get(self, guild_id: str) -> DefenceConfig | None:
        async with get_session(self.engine) as session:
            return await Repository(session).get_defence_config(guild_id)

    async def update(self, guild_id: str, **changes: Any) -> DefenceConfig:
        """Merge *changes* (None values ignored) into the guild's config.

        Raises:
            ValueError: the guild has no config yet and *changes* has no
                ``parent_category``.
        """
        updates = {k: v for k, v in changes.items() if v is not None}
        async with get_session(self.engine) as session:
            repo = Repository(session)
            current = await repo.get_defence_config(guild_id)
            if current is None:
                if not updates.get("parent_category"):
                    raise ValueError("A category is required the first time the config is set.")
                merged = DefenceConfig(**updates)
            else:
                merged = current.model_copy(update=updates)
            saved = await repo.set_defence_config(guild_id, merged)
        logger.info("defence_config_updated guild=%s fields=%s", guild_id, sorted(updates))
        return saved
