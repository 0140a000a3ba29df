from __future__ import annotations

import logging
import re
from typing import Any, Sequence

from .errors import ModelProtocolError
from .merger import transcript
from .normalize import split_on_marker
from .ports import RetrievalEnginePort
from .types import ModeDecision, OperationMode

RULES_DELIMITER = "--rules--"
DEFAULT_MODE = OperationMode.EXPLORATION

_MODE_WORD_RE = re.compile(r"\b(setup|exploration|combat)\b", re.IGNORECASE)

NO_PROFILES_TEXT = (
    "No character profiles are provided. "
    "Please ensure all character profiles are available before starting the campaign."
)

GM_RULES = (
    "1. Stay in character as DM.\n"
    "2. When I tell you what I do, describe what happens briefly but colorfully.\n"
    "3. Your description ends when it is unclear what my character should do next.\n"
    "4. NEVER make choices for me, and NEVER finish until there is a choice for me to make.\n"
    "5. NEVER describe options or ask questions, as it breaks immersion. "
    "That goes especially for open-ended questions, thought provoking questions, etc.\n"
    "6. ALWAYS determine what 5e rules apply by looking up what is happening in the documents "
    "and retrieving relevant rules.\n"
    "7. Once you have determined which rules apply, ALWAYS ask the players to roll.\n"
    "8. When a user rolls you must ALWAYS include the DC or AC, and print exactly what happens "
    "for a natural 20, success, failure, and critical failure. Users will also roll dice for damage.\n"
    "These 8 rules are sacrosanct. Follow them for EVERY reply.\n"
    "If I suggest something prevented by the rules, such as casting a spell that I do not have "
    "on my character sheet, explain why I cannot and prompt me again.\n"
)

COMBAT_RULES = (
    "Combat rules:\n"
    "1. At the start of combat, roll initiative. Create an \"encounter yaml\" structure with the "
    "initiative order, and the enemies' stats, including AC, HP, attacks, to-hit bonus, and damage.\n"
    "2. Update it each round.\n"
    "3. Each round, ask me what I do. Then take EACH enemy's action rolling dice appropriately, "
    "in initiative order.\n"
    "4. Before you are done with your reply, you must comprehensively update the encounter yaml "
    "and the player yaml if anything has changed such as HP totals etc.\n"
    "Violent death, both monster and pc, is expected and ok.\n"
    "When something happens to the character, update the character yaml.\n"
    "Each time you reply, something interesting and novel should happen.\n"
)


def profile_text(profiles: Sequence[Any]) -> str:
    return "\n\n".join(str(profile.data or "") for profile in profiles)


def build_mode_prompt(
    recent_turns: Sequence[Any],
    profiles: Sequence[Any],
    *,
    agent_id: str | None = None,
) -> str:
    return (
        "You are a GM running a D&D 5th edition campaign. Based on the following recent messages, "
        "determine the current operation mode:\n"
        f"{transcript(recent_turns, agent_id=agent_id)}\n"
        "The modes are:\n"
        "1. setup: Characters are not yet set up and the campaign has not started.\n"
        "2. exploration: Activities that are not during a combat encounter.\n"
        "3. combat: Ensuring all characters act before continuing with the campaign description.\n"
        "Respond with only the mode name: setup, exploration, or combat.\n\n"
        "Here are the character profiles:\n"
        f"{profile_text(profiles)}\n"
        f"After the operation mode output {RULES_DELIMITER} followed by any rules that are "
        "appropriate for the situation from our rulebook."
    )


def build_clarifying_prompt(previous_response: str) -> str:
    return (
        "Your previous answer did not follow the required format:\n"
        f"{previous_response}\n\n"
        "Reply again with exactly one mode name (setup, exploration, or combat), then the line "
        f"{RULES_DELIMITER}, then the applicable rules."
    )


def parse_mode_response(text: str) -> ModeDecision:
    """Split a classifier reply into mode and rules.

    Raises :class:`ModelProtocolError` when the delimiter is missing or the
    head does not name a known mode.
    """
    head, rules = split_on_marker(text or "", RULES_DELIMITER)
    if rules is None:
        raise ModelProtocolError(f"missing {RULES_DELIMITER} delimiter", response=text or "")
    mode = _coerce_mode(head)
    if mode is None:
        raise ModelProtocolError(f"unknown operation mode {head.strip()!r}", response=text or "")
    return ModeDecision(mode=mode, rules=rules.strip())


def _coerce_mode(head: str) -> OperationMode | None:
    token = head.strip().strip(".*`'\"").lower()
    try:
        return OperationMode(token)
    except ValueError:
        pass
    match = _MODE_WORD_RE.search(head)
    if match:
        return OperationMode(match.group(1).lower())
    return None


def recover_mode(text: str, fallback: OperationMode = DEFAULT_MODE) -> ModeDecision:
    """Best effort for replies that never produced the delimiter."""
    match = _MODE_WORD_RE.search(text or "")
    mode = OperationMode(match.group(1).lower()) if match else fallback
    return ModeDecision(mode=mode, rules="", recovered=True)


def system_prompt_for(mode: OperationMode, profiles: Sequence[Any]) -> str:
    if profiles:
        profile_block = f"Here are the character profiles:\n{profile_text(profiles)}"
    else:
        profile_block = NO_PROFILES_TEXT

    if mode is OperationMode.SETUP:
        return (
            "The campaign is in setup mode.\n"
            f"{profile_block}\n"
            "Encourage the players to set up their characters and provide any necessary rules for setup.\n"
        )
    if mode is OperationMode.COMBAT:
        return (
            "The campaign is in combat mode.\n"
            f"{profile_block}\n"
            "Ensure all characters have a chance to act before continuing with the campaign description.\n"
            "Output your continuation message asking for any dice rolls required by the "
            "D&D 5th edition rules.\n\n"
            f"{GM_RULES}\n"
            f"{COMBAT_RULES}"
        )
    return (
        "The campaign is in exploration mode.\n"
        f"{profile_block}\n"
        "Continue the campaign with appropriate rules for exploration activities.\n\n"
        f"{GM_RULES}"
    )


class ModeClassifier:
    """Re-derives the operation mode from recent turns on every call."""

    def __init__(
        self,
        *,
        window: int = 10,
        fallback: OperationMode = DEFAULT_MODE,
        logger: logging.Logger | None = None,
    ):
        self._window = window
        self._fallback = fallback
        self._logger = logger or logging.getLogger(__name__)

    def recent_window(self, turns: Sequence[Any]) -> list[Any]:
        return list(turns)[-self._window :] if self._window > 0 else []

    async def classify(
        self,
        engine: RetrievalEnginePort,
        turns: Sequence[Any],
        profiles: Sequence[Any],
        *,
        agent_id: str | None = None,
    ) -> ModeDecision:
        prompt = build_mode_prompt(self.recent_window(turns), profiles, agent_id=agent_id)
        response = await engine.query(prompt)
        try:
            return parse_mode_response(response)
        except ModelProtocolError as exc:
            self._logger.warning("Mode reply violated protocol (%s), re-prompting once", exc)

        retry_response = await engine.query(f"{prompt}\n\n{build_clarifying_prompt(response or '')}")
        try:
            return parse_mode_response(retry_response)
        except ModelProtocolError as exc:
            self._logger.warning("Mode reply still invalid (%s), falling back", exc)
        return recover_mode(retry_response or response, self._fallback)
