from __future__ import annotations

import asyncio

from chat_agent_engine.core import (
    AssistantHandler,
    GameMasterHandler,
    InboundMessage,
    MessageDispatcher,
    RoomResourceCache,
)
from chat_agent_engine.persistence.sqlalchemy import (
    SQLAlchemyUnitOfWork,
    build_engine,
    build_session_factory,
    create_schema,
)

AGENT_ID = "900"


class DemoRetrievalEngine:
    def __init__(self, room_id: str, load_rulebooks: bool = False):
        self.room_id = room_id
        self.load_rulebooks = load_rulebooks

    async def query(self, prompt: str) -> str:
        if prompt.startswith("You are a GM running"):
            return "exploration --rules-- Perception checks use WIS."
        if prompt.startswith("You are a helpful assistant. Respond in short order"):
            return "specialist_id: travel_specialist"
        return "Lisbon in spring: walk Alfama early, then take tram 28."


class DemoNarrativeModel:
    async def complete(self, system, messages, *, max_tokens):
        return "The road bends toward a ruined watchtower. What do you do?"


class PrintTransport:
    async def send(self, room_id, content=None, *, attachments=None):
        print(f"[{room_id}] {content}")


async def build_retrieval_engine(room_id: str, **options) -> DemoRetrievalEngine:
    return DemoRetrievalEngine(room_id, **options)


async def main() -> None:
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    session_factory = build_session_factory(engine)

    def uow_factory():
        return SQLAlchemyUnitOfWork(session_factory)

    transport = PrintTransport()
    engines = RoomResourceCache(build_retrieval_engine)
    dispatcher = MessageDispatcher(
        uow_factory,
        transport,
        AGENT_ID,
        {
            "gm": GameMasterHandler(uow_factory, engines, transport, AGENT_ID, DemoNarrativeModel()),
            "assistant": AssistantHandler(uow_factory, engines, transport, AGENT_ID),
        },
    )

    await dispatcher.dispatch(InboundMessage("table", "1", f"<@{AGENT_ID}> setrole:gm"))
    await dispatcher.dispatch(InboundMessage("table", "1", "I roll 1d20 to search the road"))

    await dispatcher.dispatch(InboundMessage("lobby", "2", f"<@{AGENT_ID}> setrole:assistant"))
    await dispatcher.dispatch(InboundMessage("lobby", "2", f"<@{AGENT_ID}> plan me a day in Lisbon"))

    with uow_factory() as uow:
        for turn in uow.turns.read("table"):
            print("stored:", turn.role, turn.content)
    await engines.aclose()


if __name__ == "__main__":
    asyncio.run(main())
