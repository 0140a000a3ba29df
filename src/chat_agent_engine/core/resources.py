from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

from .ports import RetrievalEngineFactory


@dataclass
class _Entry:
    task: asyncio.Task
    refs: int = 0


class RoomResourceCache:
    """Lazily build one shared resource per room.

    Concurrent first use of the same room awaits a single in-flight build.
    A failed build is forgotten so the next caller retries it. ``lease``
    counts active users so :meth:`evict` never drops a handle in use.
    """

    def __init__(self, builder: RetrievalEngineFactory, *, logger: logging.Logger | None = None):
        self._builder = builder
        self._entries: dict[str, _Entry] = {}
        self._logger = logger or logging.getLogger(__name__)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, room_id: str, **options: Any) -> Any:
        entry = self._entries.get(room_id)
        if entry is None:
            self._logger.info("Initializing retrieval engine for room %s", room_id)
            task = asyncio.ensure_future(self._builder(room_id, **options))
            entry = _Entry(task=task)
            self._entries[room_id] = entry
        try:
            return await asyncio.shield(entry.task)
        except Exception:
            if self._entries.get(room_id) is entry:
                del self._entries[room_id]
            raise

    @contextlib.asynccontextmanager
    async def lease(self, room_id: str, **options: Any) -> AsyncIterator[Any]:
        resource = await self.get(room_id, **options)
        entry = self._entries[room_id]
        entry.refs += 1
        try:
            yield resource
        finally:
            entry.refs -= 1

    def refcount(self, room_id: str) -> int:
        entry = self._entries.get(room_id)
        return entry.refs if entry is not None else 0

    async def evict(self, room_id: str) -> bool:
        entry = self._entries.get(room_id)
        if entry is None or entry.refs > 0 or not entry.task.done():
            return False
        del self._entries[room_id]
        await self._close_entry(room_id, entry)
        return True

    async def aclose(self) -> None:
        entries = list(self._entries.items())
        self._entries.clear()
        for room_id, entry in entries:
            if not entry.task.done():
                entry.task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await entry.task
                continue
            await self._close_entry(room_id, entry)

    async def _close_entry(self, room_id: str, entry: _Entry) -> None:
        if entry.task.cancelled() or entry.task.exception() is not None:
            return
        resource = entry.task.result()
        close = getattr(resource, "aclose", None) or getattr(resource, "close", None)
        if close is None:
            return
        try:
            maybe = close()
            if asyncio.iscoroutine(maybe):
                await maybe
        except Exception:
            self._logger.warning("Closing resource for room %s failed", room_id, exc_info=True)
