from __future__ import annotations

import asyncio

from chat_agent_engine.core.profiles import ProfileExtractor, parse_profile_blocks


def test_parse_skips_blocks_without_header():
    text = "-- Aria --\nMedium humanoid\nAC 15\n\njust some notes\nwith no header\n\n--  --\nempty name"
    blocks = parse_profile_blocks(text)
    assert [block.name for block in blocks] == ["Aria"]
    assert blocks[0].data.startswith("-- Aria --")


def test_only_known_characters_are_upserted(uow_factory):
    with uow_factory() as uow:
        uow.profiles.upsert("room-1", "player-7", "Aria", "old sheet")
        uow.commit()

    text = "-- Aria --\nHit Points 12\n\nrandom malformed blob\n\n-- Bram --\nHit Points 9"
    written = ProfileExtractor(uow_factory).apply("room-1", text)
    assert written == ["Aria"]

    with uow_factory() as uow:
        profiles = uow.profiles.list("room-1")
    assert len(profiles) == 1
    assert profiles[0].owner_id == "player-7"
    assert profiles[0].data == "-- Aria --\nHit Points 12"


def test_no_upsert_when_room_has_no_matching_profile(uow_factory):
    written = ProfileExtractor(uow_factory).apply("room-1", "-- Aria --\nstats")
    assert written == []
    with uow_factory() as uow:
        assert uow.profiles.list("room-1") == []


def test_refresh_swallows_model_failures(uow_factory):
    class BrokenEngine:
        async def query(self, prompt):
            raise RuntimeError("timeout")

    async def run_test():
        written = await ProfileExtractor(uow_factory).refresh("room-1", BrokenEngine(), "narration", [])
        assert written == []

    asyncio.run(run_test())
