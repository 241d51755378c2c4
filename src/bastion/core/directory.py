"""Village directory backed by the game world's ``map.sql`` dump.

The dump is a series of ``INSERT INTO ... VALUES (...),(...);`` statements,
one tuple per village. It is downloaded shortly after startup and refreshed
daily; the call engine only uses :meth:`VillageDirectory.find_village_at`
to name channels.
"""

from __future__ import annotations

import logging
import re

import httpx

from bastion.models.defence import Village

logger = logging.getLogger(__name__)

_ROW = re.compile(r"\((.*?)\)")
_FIELD_SPLIT = re.compile(r",(?=(?:[^']*'[^']*')*[^']*$)")

DOWNLOAD_TIMEOUT_SECONDS = 60.0


def _parse_row(raw: str) -> Village | None:
    parts = [p.strip().strip("'") for p in _FIELD_SPLIT.split(raw)]
    if len(parts) < 8:
        return None
    try:
        return Village(
            x=int(parts[1]),
            y=int(parts[2]),
            tribe=int(parts[3]),
            village_name=parts[5],
            player_name=parts[7],
            is_capital=len(parts) > 12 and parts[12].upper() == "TRUE",
        )
    except ValueError:
        return None


def parse_map_sql(text: str) -> list[Village]:
    """Extract villages from the INSERT statements of a map dump."""
    villages: list[Village] = []
    for line in text.splitlines():
        if not line.startswith("INSERT"):
            continue
        for raw in _ROW.findall(line):
            village = _parse_row(raw)
            if village is not None:
                villages.append(village)
    return villages


class VillageDirectory:
    """Coordinate lookup over the latest map dump."""

    def __init__(self, source_url: str = "") -> None:
        self.source_url = source_url
        self._by_coords: dict[tuple[int, int], Village] = {}

    def __len__(self) -> int:
        return len(self._by_coords)

    def load(self, villages: list[Village]) -> None:
        self._by_coords = {(v.x, v.y): v for v in villages}

    def find_village_at(self, x: int, y: int) -> Village | None:
        return self._by_coords.get((x, y))

    async def refresh(self, client: httpx.AsyncClient | None = None) -> int:
        """Download and load the dump. Keeps the previous data on failure.

        Returns the number of villages now loaded.
        """
        if not self.source_url:
            return len(self)
        logger.info("directory_refresh_started url=%s", self.source_url)
        try:
            if client is None:
                async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS) as own_client:
                    response = await own_client.get(self.source_url)
            else:
                response = await client.get(self.source_url)
            response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("directory_refresh_failed url=%s", self.source_url)
            return len(self)

        villages = parse_map_sql(response.text)
        if not villages:
            logger.warning("directory_refresh_empty url=%s", self.source_url)
            return len(self)
        self.load(villages)
        logger.info("directory_refresh_complete villages=%d", len(villages))
        return len(villages)
