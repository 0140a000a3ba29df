from __future__ import annotations

import random
import re
from typing import Iterable

_DICE_RE = re.compile(r"\b(\d+)d(\d+)\b")
_SETROLE_PREFIX = "setrole:"


def mention_for(user_id: str) -> str:
    return f"<@{user_id}>"


def roll_dice(count: int, sides: int, rng: random.Random | None = None) -> int:
    rng = rng or random
    return sum(rng.randint(1, sides) for _ in range(count))


def replace_dice_rolls(
    text: str,
    rng: random.Random | None = None,
    *,
    max_dice: int = 100,
    max_sides: int = 1000,
) -> str:
    """Replace every ``NdM`` token in *text* with a rolled total.

    Tokens with no sides, or with more than *max_dice* dice or *max_sides*
    sides, are left as written.
    """

    def _bounded(digits: str, limit: int) -> int | None:
        if len(digits) > len(str(limit)):
            return None
        value = int(digits)
        return value if value <= limit else None

    def _roll(match: re.Match[str]) -> str:
        count = _bounded(match.group(1), max_dice)
        sides = _bounded(match.group(2), max_sides)
        if count is None or sides is None or sides < 1:
            return match.group(0)
        return str(roll_dice(count, sides, rng))

    return _DICE_RE.sub(_roll, text or "")


def contains_ignored_keyword(text: str, keywords: Iterable[str]) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in keywords)


def strip_mention(text: str, user_id: str) -> str:
    return (text or "").replace(mention_for(user_id), "", 1).strip()


def parse_setrole_command(text: str, agent_id: str) -> str | None:
    """Return the requested role for ``<@agent> setrole:<mode>``, else ``None``."""
    mention = mention_for(agent_id)
    content = text or ""
    if not content.startswith(mention):
        return None
    command = content[len(mention):].strip()
    if not command.startswith(_SETROLE_PREFIX):
        return None
    role = command[len(_SETROLE_PREFIX):].strip()
    return role or None


def chunk_text(text: str, max_chars: int) -> list[str]:
    chunks = []
    for start in range(0, len(text or ""), max_chars):
        piece = text[start : start + max_chars].strip()
        if piece:
            chunks.append(piece)
    return chunks


def whitespace_token_count(text: str) -> int:
    return len((text or "").split())


def split_on_marker(text: str, marker: str) -> tuple[str, str | None]:
    """Split *text* on the first *marker*; the tail is ``None`` when absent."""
    head, found, tail = (text or "").partition(marker)
    if not found:
        return head, None
    return head, tail
