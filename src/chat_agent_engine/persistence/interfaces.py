from __future__ import annotations

from typing import Protocol


class TurnRepo(Protocol):
    def append(self, room_id: str, author_id: str, role: str, content: str): ...
    def read(self, room_id: str): ...
    def soft_delete(self, room_id: str, count: int) -> int: ...


class SummaryRepo(Protocol):
    def get(self, room_id: str) -> str: ...
    def set(self, room_id: str, text: str): ...


class ProfileRepo(Protocol):
    def upsert(self, room_id: str, owner_id: str, name: str, data: str): ...
    def list(self, room_id: str): ...


class ChannelRoleRepo(Protocol):
    def get(self, room_id: str) -> str | None: ...
    def set(self, room_id: str, role: str): ...


class UnitOfWork(Protocol):
    turns: TurnRepo
    summaries: SummaryRepo
    profiles: ProfileRepo
    channel_roles: ChannelRoleRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
