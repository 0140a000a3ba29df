from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Protocol

from .config import AgentConfig
from .normalize import parse_setrole_command
from .ports import ChatTransportPort
from .types import InboundMessage, TurnOutcome


class MessageHandler(Protocol):
    async def handle(self, message: InboundMessage) -> TurnOutcome:
        ...


class MessageDispatcher:
    """Routes inbound chat events to the handler bound to their room.

    Messages in the same room are processed one at a time; different rooms
    run concurrently.
    """

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        transport: ChatTransportPort,
        agent_id: str,
        handlers: Mapping[str, MessageHandler],
        *,
        config: AgentConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self._uow_factory = uow_factory
        self._transport = transport
        self._agent_id = str(agent_id)
        self._handlers = dict(handlers)
        self._config = config or AgentConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    async def dispatch(self, message: InboundMessage) -> TurnOutcome:
        if message.author_is_bot or str(message.author_id) == self._agent_id:
            return TurnOutcome(status="ignored")
        try:
            return await self._dispatch(message)
        except Exception:
            self._logger.exception("Dispatch failed for message in room %s", message.room_id)
            if message.can_send:
                try:
                    await self._transport.send(message.room_id, self._config.failure_message)
                except Exception:
                    self._logger.warning("Could not deliver failure message", exc_info=True)
            return TurnOutcome(status="failed")

    async def _dispatch(self, message: InboundMessage) -> TurnOutcome:
        room_id = message.room_id
        requested_role = parse_setrole_command(message.content, self._agent_id)
        if requested_role is not None:
            async with self._get_lock(room_id):
                self.set_role(room_id, requested_role)
            if message.can_send:
                await self._transport.send(room_id, f"Role set to {requested_role}")
            return TurnOutcome(status="role_set")

        role = self.get_role(room_id)
        if role is None:
            return TurnOutcome(status="inert")
        handler = self._handlers.get(role)
        if handler is None:
            self._logger.info("No handler for role %s in room %s", role, room_id)
            return TurnOutcome(status="inert")

        async with self._get_lock(room_id):
            return await handler.handle(message)

    def get_role(self, room_id: str) -> str | None:
        with self._uow_factory() as uow:
            return uow.channel_roles.get(room_id)

    def set_role(self, room_id: str, role: str) -> None:
        with self._uow_factory() as uow:
            uow.channel_roles.set(room_id, role)
            uow.commit()
        self._logger.info("Room %s role set to %s", room_id, role)
