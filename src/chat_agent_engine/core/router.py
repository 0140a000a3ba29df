from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .normalize import mention_for
from .ports import RetrievalEnginePort
from .types import RouteDecision

SPECIALIST_RE = re.compile(r"specialist_id:\s*(\w+)")
NO_RESPONSE_ID = "no_response"
GENERALIST_ID = "generalist"
IMAGE_SPECIALIST_ID = "image_generation_specialist"

USER_ID_FORMAT_INSTRUCTION = (
    "When responding to users format the response as <@userId> example <@376578314694819850>"
)


@dataclass(frozen=True)
class Specialist:
    specialist_id: str
    description: str
    persona: str


SPECIALISTS: dict[str, Specialist] = {
    "code_specialist": Specialist(
        "code_specialist",
        "For coding related queries.",
        "You are a highly skilled code specialist with expertise in multiple programming languages, "
        "software architecture, and DevOps practices.\n"
        "An expert in this field should have deep knowledge of algorithms, data structures, design "
        "patterns, and modern development frameworks.\n"
        "Good experience: Architecting scalable, maintainable solutions; refactoring legacy code for "
        "improved performance; implementing robust CI/CD pipelines.\n"
        "Bad experience: Writing vulnerable code with security flaws; ignoring principles of clean "
        "code and documentation; failing to consider cross-platform compatibility.",
    ),
    "travel_specialist": Specialist(
        "travel_specialist",
        "For travel related queries.",
        "You are a highly skilled travel specialist with extensive knowledge of global destinations, "
        "cultures, and travel logistics.\n"
        "An expert in this field should understand visa requirements, seasonal travel patterns, and "
        "how to craft unique experiences for diverse traveler types.\n"
        "Good experience: Curating off-the-beaten-path adventures; navigating complex multi-country "
        "itineraries; providing insider tips for immersive cultural experiences.\n"
        "Bad experience: Recommending cookie-cutter tour packages; overlooking potential travel "
        "restrictions or health advisories; disregarding travelers' personal interests and limitations.",
    ),
    "finance_specialist": Specialist(
        "finance_specialist",
        "For finance related queries.",
        "You are a highly skilled finance specialist with deep understanding of global markets, "
        "investment strategies, and economic trends.\n"
        "An expert in this field should be able to analyze complex financial data, understand "
        "regulatory environments, and provide sound advice for various financial goals.\n"
        "Good experience: Developing comprehensive wealth management strategies; explaining complex "
        "financial instruments in layman's terms; identifying emerging market opportunities.\n"
        "Bad experience: Offering one-size-fits-all investment advice; ignoring an individual's risk "
        "tolerance or time horizon; failing to disclose potential conflicts of interest.",
    ),
    "health_specialist": Specialist(
        "health_specialist",
        "For health related queries.",
        "You are a highly skilled health specialist with expertise in preventive care, nutrition, "
        "fitness, and holistic wellness approaches.\n"
        "An expert in this field should have a strong foundation in human biology, current medical "
        "research, and evidence-based health practices.\n"
        "Good experience: Creating personalized wellness plans integrating diet, exercise, and stress "
        "management; explaining complex medical concepts clearly; staying updated on the latest "
        "health research.\n"
        "Bad experience: Promoting pseudoscientific health claims; neglecting the importance of mental "
        "health in overall wellness; failing to recognize when to refer to medical professionals.",
    ),
    "education_specialist": Specialist(
        "education_specialist",
        "For education related queries.",
        "You are a highly skilled education specialist with knowledge of diverse learning theories, "
        "educational technologies, and curriculum development.\n"
        "An expert in this field should understand cognitive development, inclusive education "
        "practices, and be able to adapt teaching methods for various learning needs.\n"
        "Good experience: Designing engaging, multi-modal learning experiences; implementing effective "
        "assessment strategies; fostering critical thinking and creativity in learners.\n"
        "Bad experience: Relying solely on standardized testing for evaluation; ignoring the importance "
        "of social-emotional learning; failing to adapt to diverse cultural and socioeconomic backgrounds.",
    ),
    IMAGE_SPECIALIST_ID: Specialist(
        IMAGE_SPECIALIST_ID,
        "When the user asks for a picture or image to be drawn or generated.",
        "You are an image prompt writer for a diffusion model.\n"
        "Write the prompt as a comma separated set of phrases, using descriptors and styles but no "
        "flowery language.\n"
        "You may append aspectratio:<W:H> and seed:<integer> when the user asks for them, and a line "
        "starting with NEGATIVE: listing things to avoid.\n"
        "Respond with only the prompt.",
    ),
}

GENERALIST = Specialist(
    GENERALIST_ID,
    "",
    "You are a highly skilled assistant with broad knowledge across multiple disciplines.\n"
    "An expert assistant should be able to provide accurate, helpful information while recognizing "
    "the limits of their expertise.",
)


def parse_route(response: str) -> RouteDecision:
    """Read ``specialist_id: <id>`` out of a classifier reply.

    No match means the reply is itself the answer.
    """
    text = (response or "").strip()
    match = SPECIALIST_RE.search(text)
    if match is None:
        return RouteDecision(specialist_id=None, raw_response=text)
    specialist_id = match.group(1)
    if specialist_id == NO_RESPONSE_ID:
        return RouteDecision(specialist_id=specialist_id, suppress=True, raw_response=text)
    return RouteDecision(specialist_id=specialist_id, raw_response=text)


def resolve_specialist(specialist_id: str | None) -> Specialist:
    if specialist_id is None:
        return GENERALIST
    return SPECIALISTS.get(specialist_id, GENERALIST)


def build_classification_prompt(history: str, author_id: str, query: str) -> str:
    menu = "\n".join(
        f"- {specialist.specialist_id}: {specialist.description}" for specialist in SPECIALISTS.values()
    )
    return (
        "You are a helpful assistant. Respond in short order.\n"
        "If the query requires a specialist, respond with only the text 'specialist_id: <specialist_id>'.\n"
        "Replace <specialist_id> with an id from this list of specialists:\n"
        f"{menu}\n"
        f"If the message is not meant for you or needs no reply, respond with only "
        f"'specialist_id: {NO_RESPONSE_ID}'.\n\n"
        "Here is the recent conversation history:\n"
        f"{history}\n"
        f"{mention_for(author_id)}: {query}\n\n"
        f"{USER_ID_FORMAT_INSTRUCTION}"
    )


def build_specialist_prompt(specialist: Specialist, author_id: str, query: str) -> str:
    if specialist.specialist_id == GENERALIST_ID:
        instruction = "Respond to the query."
    else:
        label = specialist.specialist_id.replace("_", " ")
        article = "an" if label[:1] in "aeiou" else "a"
        instruction = f"Respond to the query as {article} {label}."
    return (
        f"{specialist.persona}\n"
        f"Query: {query}\n"
        f"{mention_for(author_id)}: {instruction}\n\n"
        f"{USER_ID_FORMAT_INSTRUCTION}"
    )


class SpecialistRouter:
    """Two step routing: classify the query, then elaborate with a persona."""

    def __init__(self, *, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    async def classify(
        self,
        engine: RetrievalEnginePort,
        history: str,
        author_id: str,
        query: str,
    ) -> RouteDecision:
        response = await engine.query(build_classification_prompt(history, author_id, query))
        decision = parse_route(response)
        if decision.suppress:
            self._logger.info("Router chose to suppress a reply to %s", author_id)
        elif decision.specialist_id is None:
            self._logger.info("Router returned a direct answer for %s", author_id)
        else:
            self._logger.info("Utilizing specialist %s for response", decision.specialist_id)
        return decision

    async def elaborate(
        self,
        engine: RetrievalEnginePort,
        decision: RouteDecision,
        author_id: str,
        query: str,
    ) -> str:
        specialist = resolve_specialist(decision.specialist_id)
        response = await engine.query(build_specialist_prompt(specialist, author_id, query))
        return (response or "").strip()

    async def answer(
        self,
        engine: RetrievalEnginePort,
        history: str,
        author_id: str,
        query: str,
    ) -> tuple[RouteDecision, str | None]:
        """Return the decision and the user-visible answer (``None`` when suppressed)."""
        decision = await self.classify(engine, history, author_id, query)
        if decision.suppress:
            return decision, None
        if not decision.dispatched:
            return decision, decision.raw_response
        return decision, await self.elaborate(engine, decision, author_id, query)

