from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from .config import CompactionConfig
from .merger import transcript
from .normalize import whitespace_token_count
from .ports import RetrievalEnginePort
from .types import CompactionReport


def should_roll(history_length: int, batch_size: int = 10) -> bool:
    """Rolling compaction fires on positive multiples of *batch_size* past the first."""
    return history_length > batch_size and history_length % batch_size == 0


def should_reduce(summary: str, token_limit: int = 10_000) -> bool:
    return whitespace_token_count(summary) > token_limit


def build_rolling_prompt(current_summary: str, turns: Sequence[Any], *, agent_id: str | None = None) -> str:
    return (
        "You are a note taker for a table top role playing game where the previous summary was as follows:\n"
        f"{current_summary}\n"
        "Summarize the following messages along with the current summary so the GM can continue the "
        "campaign from your notes.\n"
        "Only summarize the current campaign state. Do not include character states.\n\n"
        "Here is what happened since the last summary was generated:\n"
        f"{transcript(turns, agent_id=agent_id)}"
    )


def build_reduction_prompt(summary: str) -> str:
    return (
        "You are a note taker for a table top role playing game. The current summary is too long:\n"
        f"{summary}\n"
        "Please reduce the summary by removing the oldest part of the history while maintaining GM "
        "instructions and character info. Convert detailed summary info into concise rough history "
        "where possible."
    )


class CompactionScheduler:
    """Keeps a room's live history and summary inside fixed bounds.

    Rolling compaction runs before summary reduction. Model failures in
    either step are logged and leave the stored summary untouched; storage
    failures propagate.
    """

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        *,
        config: CompactionConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self._uow_factory = uow_factory
        self._config = config or CompactionConfig()
        self._logger = logger or logging.getLogger(__name__)

    async def run(
        self,
        room_id: str,
        engine: RetrievalEnginePort,
        *,
        agent_id: str | None = None,
    ) -> CompactionReport:
        cfg = self._config
        with self._uow_factory() as uow:
            history = uow.turns.read(room_id)
            summary = uow.summaries.get(room_id)

        report = CompactionReport(history_length=len(history))

        if should_roll(len(history), cfg.batch_size):
            self._logger.info(
                "Room %s history length %s reached a compaction checkpoint",
                room_id,
                len(history),
            )
            oldest = history[: cfg.batch_size]
            try:
                updated = await engine.query(build_rolling_prompt(summary, oldest, agent_id=agent_id))
            except Exception as exc:
                self._logger.warning("Rolling compaction failed for room %s: %s", room_id, exc)
                report.errors.append(f"rolling:{exc}")
            else:
                updated = (updated or "").strip()
                with self._uow_factory() as uow:
                    uow.summaries.set(room_id, updated)
                    report.deleted_turns = uow.turns.soft_delete(room_id, cfg.batch_size)
                    uow.commit()
                summary = updated
                report.rolled = True
                self._logger.info(
                    "Updated campaign summary for room %s, marked %s turns deleted",
                    room_id,
                    report.deleted_turns,
                )

        report.summary_tokens = whitespace_token_count(summary)
        if should_reduce(summary, cfg.summary_token_limit):
            self._logger.info(
                "Campaign summary for room %s has %s tokens, reducing",
                room_id,
                report.summary_tokens,
            )
            try:
                reduced = await engine.query(build_reduction_prompt(summary))
            except Exception as exc:
                self._logger.warning("Summary reduction failed for room %s: %s", room_id, exc)
                report.errors.append(f"reduction:{exc}")
            else:
                reduced = (reduced or "").strip()
                with self._uow_factory() as uow:
                    uow.summaries.set(room_id, reduced)
                    uow.commit()
                report.reduced = True
                report.summary_tokens = whitespace_token_count(reduced)

        return report
