from __future__ import annotations

from dataclasses import dataclass

from chat_agent_engine.core.merger import merge_turns, transcript
from chat_agent_engine.core.types import ChatBlock


@dataclass
class FakeTurn:
    author_id: str
    role: str
    content: str


def test_consecutive_same_role_turns_are_joined():
    turns = [FakeTurn("u1", "user", "a"), FakeTurn("u2", "user", "b"), FakeTurn("bot-1", "assistant", "c")]
    blocks = merge_turns(turns, agent_id="bot-1", label_speakers=False)
    assert blocks == [ChatBlock("user", "a\nb"), ChatBlock("assistant", "c")]


def test_default_merge_prefixes_each_line_with_its_speaker():
    turns = [FakeTurn("u1", "user", "a"), FakeTurn("u2", "user", "b"), FakeTurn("bot-1", "assistant", "c")]
    blocks = merge_turns(turns, agent_id="bot-1")
    assert blocks == [ChatBlock("user", "@u1: a\n@u2: b"), ChatBlock("assistant", "@bot: c")]


def test_blank_turns_are_dropped_and_roles_never_repeat():
    turns = [
        FakeTurn("u1", "user", "hello"),
        FakeTurn("bot-1", "agent", "   "),
        FakeTurn("u2", "user", "still here"),
        FakeTurn("bot-1", "agent", "The door creaks."),
        FakeTurn("bot-1", "assistant", "Roll a d20."),
        FakeTurn("u1", "user", ""),
    ]
    blocks = merge_turns(turns, agent_id="bot-1")
    roles = [block.role for block in blocks]
    assert roles == ["user", "assistant"]
    assert all(a != b for a, b in zip(roles, roles[1:]))
    assert blocks[0].content == "@u1: hello\n@u2: still here"
    assert blocks[1].content == "@bot: The door creaks.\n@bot: Roll a d20."


def test_agent_identity_is_replaced_by_placeholder():
    turns = [FakeTurn("u1", "user", "hi"), FakeTurn("bot-1", "agent", "welcome")]
    text = transcript(turns, agent_id="bot-1")
    assert "bot-1" not in text
    assert text == "@u1: hi\n@bot: welcome"


def test_seed_blocks_take_part_in_merging():
    seed = [ChatBlock("user", "summarize"), ChatBlock("assistant", "summary")]
    turns = [FakeTurn("bot-1", "agent", "narration"), FakeTurn("u1", "user", "I attack")]
    blocks = merge_turns(turns, agent_id="bot-1", seed=seed)
    assert [block.role for block in blocks] == ["user", "assistant", "user"]
    assert blocks[1].content == "summary\n@bot: narration"
    assert seed[1].content == "summary"
