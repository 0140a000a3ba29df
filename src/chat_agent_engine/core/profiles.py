from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .modes import profile_text
from .ports import RetrievalEnginePort

_HEADER_RE = re.compile(r"^-- (.*) --")

PROFILE_TEMPLATE = (
    "-- CHARACTER NAME --\n"
    "Character Name\n"
    "Size Type, Alignment\n"
    "Armor Class\n"
    "Hit Points\n"
    "Speed\n"
    "STR DEX CON INT WIS CHA\n"
    "Skills\n"
    "Senses\n"
    "Languages\n"
    "Challenge\n"
    "Traits\n"
    "Actions\n"
    "Biography\n"
    "PlayerID"
)


@dataclass
class ProfileBlock:
    name: str
    data: str


def build_profile_update_prompt(profiles: Sequence[Any], narration: str) -> str:
    return (
        "You are a D&D 5e character generator. Here are the current character profiles:\n"
        f"{profile_text(profiles)}\n"
        f"Please update the character profiles based on the latest events: {narration.strip()} "
        "and ensure they are formatted exactly like the 5e Monster Manual.\n"
        "Separate characters with a blank line and use the following format for each character:\n"
        f"{PROFILE_TEMPLATE}"
    )


def parse_profile_blocks(text: str) -> list[ProfileBlock]:
    """Split concatenated character sheets into named blocks.

    Blocks are separated by blank lines; a block without a ``-- NAME --``
    header is dropped.
    """
    blocks = []
    for raw in (text or "").split("\n\n"):
        block = raw.strip()
        match = _HEADER_RE.match(block)
        if match is None:
            continue
        name = match.group(1).strip()
        if not name:
            continue
        blocks.append(ProfileBlock(name=name, data=block))
    return blocks


class ProfileExtractor:
    def __init__(self, uow_factory: Callable[[], Any], *, logger: logging.Logger | None = None):
        self._uow_factory = uow_factory
        self._logger = logger or logging.getLogger(__name__)

    def apply(self, room_id: str, text: str, existing: Sequence[Any] | None = None) -> list[str]:
        """Upsert every block that names a known character; return the names written."""
        with self._uow_factory() as uow:
            known = list(existing) if existing is not None else uow.profiles.list(room_id)
            owners: dict[str, str] = {}
            for profile in known:
                owners.setdefault(profile.name, profile.owner_id)
            written = []
            for block in parse_profile_blocks(text):
                owner_id = owners.get(block.name)
                if owner_id is None:
                    self._logger.debug("Skipping profile block for unknown character %r", block.name)
                    continue
                uow.profiles.upsert(room_id, owner_id, block.name, block.data)
                written.append(block.name)
            uow.commit()
        if written:
            self._logger.info("Updated character profiles in room %s: %s", room_id, ", ".join(written))
        return written

    async def refresh(
        self,
        room_id: str,
        engine: RetrievalEnginePort,
        narration: str,
        profiles: Sequence[Any],
    ) -> list[str]:
        try:
            response = await engine.query(build_profile_update_prompt(profiles, narration))
        except Exception as exc:
            self._logger.warning("Character profile refresh failed for room %s: %s", room_id, exc)
            return []
        return self.apply(room_id, response or "", existing=profiles)
