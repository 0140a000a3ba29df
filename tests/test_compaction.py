from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from chat_agent_engine.core.compaction import CompactionScheduler, should_reduce, should_roll
from chat_agent_engine.core.config import CompactionConfig


class RecordingEngine:
    def __init__(self, response: str = "condensed summary", fail: bool = False):
        self.response = response
        self.fail = fail
        self.prompts: list[str] = []

    async def query(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model unavailable")
        return self.response


@pytest.mark.parametrize(
    "length,expected",
    [(0, False), (10, False), (11, False), (19, False), (20, True), (21, False), (30, True), (40, True), (41, False)],
)
def test_rolling_trigger(length, expected):
    assert should_roll(length) is expected


def test_reduction_trigger_is_strictly_greater_than_limit():
    assert should_reduce(" ".join(["w"] * 10_000)) is False
    assert should_reduce(" ".join(["w"] * 10_001)) is True
    assert should_reduce("") is False


def test_rolling_compaction_folds_oldest_ten(uow_factory, seed_turns):
    async def run_test():
        seed_turns("room-1", 20)
        with uow_factory() as uow:
            uow.summaries.set("room-1", "The party met in a tavern.")
            uow.commit()

        engine = RecordingEngine("The party left the tavern.")
        report = await CompactionScheduler(uow_factory).run("room-1", engine)

        assert report.rolled is True
        assert report.deleted_turns == 10
        assert report.reduced is False
        assert "The party met in a tavern." in engine.prompts[0]
        assert "Do not include character states." in engine.prompts[0]
        assert "message 0" in engine.prompts[0] and "message 9" in engine.prompts[0]
        assert "message 10" not in engine.prompts[0]

        with uow_factory() as uow:
            live = uow.turns.read("room-1")
            assert [turn.content for turn in live] == [f"message {i}" for i in range(10, 20)]
            assert uow.summaries.get("room-1") == "The party left the tavern."

    asyncio.run(run_test())


def test_no_compaction_off_checkpoint(uow_factory, seed_turns):
    async def run_test():
        seed_turns("room-1", 21)
        engine = RecordingEngine()
        report = await CompactionScheduler(uow_factory).run("room-1", engine)
        assert report.rolled is False
        assert engine.prompts == []
        with uow_factory() as uow:
            assert len(uow.turns.read("room-1")) == 21

    asyncio.run(run_test())


def test_model_failure_keeps_stale_summary_and_history(uow_factory, seed_turns):
    async def run_test():
        seed_turns("room-1", 30)
        with uow_factory() as uow:
            uow.summaries.set("room-1", "stale")
            uow.commit()

        report = await CompactionScheduler(uow_factory).run("room-1", RecordingEngine(fail=True))
        assert report.rolled is False
        assert report.errors and report.errors[0].startswith("rolling:")
        with uow_factory() as uow:
            assert uow.summaries.get("room-1") == "stale"
            assert len(uow.turns.read("room-1")) == 30

    asyncio.run(run_test())


def test_oversized_summary_is_reduced_after_rolling(uow_factory, seed_turns):
    async def run_test():
        seed_turns("room-1", 20)
        long_summary = " ".join(["lore"] * 10_001)
        config = CompactionConfig(batch_size=10, summary_token_limit=10_000)

        class TwoStepEngine(RecordingEngine):
            async def query(self, prompt: str) -> str:
                self.prompts.append(prompt)
                return long_summary if len(self.prompts) == 1 else "short and sweet"

        engine = TwoStepEngine()
        report = await CompactionScheduler(uow_factory, config=config).run("room-1", engine)

        assert report.rolled is True
        assert report.reduced is True
        assert len(engine.prompts) == 2
        assert "The current summary is too long" in engine.prompts[1]
        with uow_factory() as uow:
            assert uow.summaries.get("room-1") == "short and sweet"

    asyncio.run(run_test())


def test_reduction_failure_is_logged_not_raised(uow_factory):
    async def run_test():
        with uow_factory() as uow:
            uow.summaries.set("room-1", "x " * 20)
            uow.commit()
        config = CompactionConfig(summary_token_limit=5)
        report = await CompactionScheduler(uow_factory, config=config).run("room-1", RecordingEngine(fail=True))
        assert report.reduced is False
        assert report.errors[0].startswith("reduction:")
        with uow_factory() as uow:
            assert uow.summaries.get("room-1") == "x " * 20

    asyncio.run(run_test())


def test_checkpoints_across_a_growing_room(uow_factory):
    async def run_test():
        scheduler = CompactionScheduler(uow_factory)
        engine = RecordingEngine("summary")
        fired_at = []
        fired_totals = []
        total = 0
        for _ in range(42):
            with uow_factory() as uow:
                uow.turns.append("room-1", "user-1", "user", f"turn {total}")
                uow.commit()
            total += 1
            with uow_factory() as uow:
                length = len(uow.turns.read("room-1"))
            report = await scheduler.run("room-1", engine)
            if report.rolled:
                fired_at.append(length)
                fired_totals.append(total)
        assert fired_totals == [20, 30, 40]
        assert fired_at == [20, 20, 20]
        with uow_factory() as uow:
            assert len(uow.turns.read("room-1")) < 20

    asyncio.run(run_test())


def test_storage_failure_during_rolling_propagates(uow_factory, seed_turns, failing_uow_factory):
    async def run_test():
        seed_turns("room-1", 20)
        scheduler = CompactionScheduler(failing_uow_factory("summaries", "set"))
        with pytest.raises(OperationalError):
            await scheduler.run("room-1", RecordingEngine("new summary"))

        with uow_factory() as uow:
            assert len(uow.turns.read("room-1")) == 20
            assert uow.summaries.get("room-1") == ""

    asyncio.run(run_test())
