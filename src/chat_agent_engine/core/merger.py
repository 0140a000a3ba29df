from __future__ import annotations

from typing import Any, Iterable, Sequence

from .types import ChatBlock, TurnRole


def logical_role(role: str) -> str:
    """Map a stored turn role onto the two roles a chat model accepts."""
    return "user" if role == TurnRole.USER.value else "assistant"


def speaker_label(author_id: str, agent_id: str | None, agent_label: str = "bot") -> str:
    if agent_id is not None and str(author_id) == str(agent_id):
        return agent_label
    return str(author_id)


def format_turn_line(turn: Any, agent_id: str | None, agent_label: str = "bot") -> str:
    return f"@{speaker_label(turn.author_id, agent_id, agent_label)}: {turn.content}"


def merge_turns(
    turns: Iterable[Any],
    *,
    agent_id: str | None = None,
    agent_label: str = "bot",
    seed: Sequence[ChatBlock] | None = None,
    label_speakers: bool = True,
) -> list[ChatBlock]:
    """Fold stored turns into strictly alternating user/assistant blocks.

    Blank turns are dropped. A turn with the same logical role as the last
    block is appended to it on a new line. ``seed`` blocks are emitted first
    and the last of them takes part in merging.

    With ``label_speakers`` (the default) each merged line is prefixed with
    ``@<author>: ``, as the game master prompt expects. Pass
    ``label_speakers=False`` to join the bare contents, so
    ``[user:"a", user:"b", assistant:"c"]`` becomes ``"a\\nb"`` and ``"c"``.
    """
    blocks = [ChatBlock(role=block.role, content=block.content) for block in (seed or ())]
    for turn in turns:
        if not (turn.content or "").strip():
            continue
        role = logical_role(turn.role)
        if label_speakers:
            line = format_turn_line(turn, agent_id, agent_label)
        else:
            line = turn.content
        if blocks and blocks[-1].role == role:
            blocks[-1].content += f"\n{line}"
        else:
            blocks.append(ChatBlock(role=role, content=line))
    return blocks


def as_messages(blocks: Iterable[ChatBlock]) -> list[dict[str, str]]:
    return [block.as_message() for block in blocks]


def transcript(turns: Iterable[Any], *, agent_id: str | None = None, agent_label: str = "bot") -> str:
    return "\n".join(format_turn_line(turn, agent_id, agent_label) for turn in turns)
