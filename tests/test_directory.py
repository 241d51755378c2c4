"""Tests for the village directory and the map.sql parser."""

import httpx

from bastion.core.directory import VillageDirectory, parse_map_sql
from bastion.models.defence import Village

MAP_SQL = (
    "INSERT INTO `x_world` VALUES "
    "(1,10,20,3,101,'Sparta, Lakonia',201,'Leonidas',301,'Hoplites',5,NULL,TRUE,NULL,NULL,NULL),"
    "(2,-5,7,1,102,'Athens',202,'Pericles',302,'Delian',8,NULL,FALSE,NULL,NULL,NULL);\n"
    "-- trailing comment\n"
)


def transport(status: int = 200, text: str = MAP_SQL) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status, text=text))


class TestParseMapSql:
    def test_rows(self) -> None:
        villages = parse_map_sql(MAP_SQL)
        assert villages == [
            Village(
                x=10, y=20, tribe=3, village_name="Sparta, Lakonia",
                player_name="Leonidas", is_capital=True,
            ),
            Village(x=-5, y=7, tribe=1, village_name="Athens", player_name="Pericles"),
        ]

    def test_ignores_other_lines(self) -> None:
        assert parse_map_sql("CREATE TABLE x_world (id int);\n") == []


class TestVillageDirectory:
    def test_find(self) -> None:
        directory = VillageDirectory()
        directory.load(parse_map_sql(MAP_SQL))
        assert directory.find_village_at(-5, 7).village_name == "Athens"
        assert directory.find_village_at(0, 0) is None

    async def test_refresh(self) -> None:
        directory = VillageDirectory("https://example.test/map.sql")
        async with httpx.AsyncClient(transport=transport()) as client:
            assert await directory.refresh(client) == 2
        assert len(directory) == 2

    async def test_failed_download_keeps_previous_data(self) -> None:
        directory = VillageDirectory("https://example.test/map.sql")
        directory.load([Village(x=1, y=1, village_name="Old")])
        async with httpx.AsyncClient(transport=transport(status=503)) as client:
            assert await directory.refresh(client) == 1
        assert directory.find_village_at(1, 1).village_name == "Old"

    async def test_empty_dump_keeps_previous_data(self) -> None:
        directory = VillageDirectory("https://example.test/map.sql")
        directory.load([Village(x=1, y=1, village_name="Old")])
        async with httpx.AsyncClient(transport=transport(text="")) as client:
            assert await directory.refresh(client) == 1

    async def test_no_source_is_noop(self) -> None:
        assert await VillageDirectory().refresh() == 0
