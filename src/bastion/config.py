"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

import pathlib

from pydantic import model_validator
from pydantic_settings import BaseSettings

REGISTRY_FILENAME = "defence-channels.json"
LEDGER_FILENAME = "defence-submissions.json"


class Settings(BaseSettings):
    """Bastion application configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Discord
    discord_bot_token: str = ""
    discord_guild_id: str = ""  # Community served by the HTTP front door
    discord_enabled: bool = False

    # Storage
    database_url: str = "sqlite+aiosqlite:///bastion.db"
    bastion_data_dir: str = "."

    # Environment
    bastion_env: str = "development"

    # Deadlines are typed by requesters in a fixed zone one hour ahead of UTC.
    bastion_deadline_utc_offset_hours: int = 1
    bastion_deadline_zone_label: str = "BST"

    # Restart forfeits pending reminders unless this is switched on.
    bastion_restore_reminders: bool = False

    # Directory (game world map dump)
    bastion_map_base_url: str = "https://united.x3.balkans.travian.com"
    bastion_map_sql_url: str = "https://united.x3.balkans.travian.com/map.sql"
    bastion_directory_refresh_cron: str = "0 0 * * *"
    bastion_directory_initial_delay_seconds: int = 10

    # HTTP front door
    bastion_rate_limit_requests: int = 3
    bastion_rate_limit_window_seconds: int = 60

    # Logging
    bastion_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _require_token_in_production(self) -> Settings:
        """Reject an enabled Discord integration with no token in production."""
        if (
            self.bastion_env == "production"
            and self.discord_enabled
            and not self.discord_bot_token
        ):
            msg = "DISCORD_BOT_TOKEN must be set in production when DISCORD_ENABLED is true."
            raise ValueError(msg)
        return self

    @property
    def data_dir(self) -> pathlib.Path:
        return pathlib.Path(self.bastion_data_dir)

    @property
    def registry_path(self) -> pathlib.Path:
        """Location of the call registry document."""
        return self.data_dir / REGISTRY_FILENAME

    @property
    def ledger_path(self) -> pathlib.Path:
        """Location of the submission ledger document."""
        return self.data_dir / LEDGER_FILENAME

    def map_link(self, x: int, y: int) -> str:
        """Return the game map URL centred on (x, y)."""
        return f"{self.bastion_map_base_url}/karte.php?x={x}&y={y}"
