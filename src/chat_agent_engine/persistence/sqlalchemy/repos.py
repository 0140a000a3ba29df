from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .models import ChannelRole, CharacterProfile, Summary, Turn


class TurnRepo:
    def __init__(self, session: Session):
        self.session = session

    def append(self, room_id: str, author_id: str, role: str, content: str) -> Turn:
        row = Turn(
            room_id=room_id,
            author_id=author_id,
            role=role,
            content=content,
            deleted=False,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def read(self, room_id: str) -> list[Turn]:
        stmt = (
            select(Turn)
            .where(Turn.room_id == room_id)
            .where(Turn.deleted.is_(False))
            .order_by(Turn.created_at.asc(), Turn.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def soft_delete(self, room_id: str, count: int) -> int:
        if count <= 0:
            return 0
        oldest = (
            select(Turn.id)
            .where(Turn.room_id == room_id)
            .where(Turn.deleted.is_(False))
            .order_by(Turn.created_at.asc(), Turn.id.asc())
            .limit(count)
        )
        ids = list(self.session.execute(oldest).scalars().all())
        if not ids:
            return 0
        stmt = update(Turn).where(Turn.id.in_(ids)).values(deleted=True)
        return self.session.execute(stmt).rowcount or 0


class SummaryRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, room_id: str) -> str:
        row = self.session.get(Summary, room_id)
        if row is None:
            return ""
        return row.text or ""

    def set(self, room_id: str, text: str) -> Summary:
        now = datetime.utcnow()
        row = self.session.get(Summary, room_id)
        if row is None:
            row = Summary(room_id=room_id, text=text, updated_at=now)
            self.session.add(row)
        else:
            row.text = text
            row.updated_at = now
        self.session.flush()
        return row


class ProfileRepo:
    def __init__(self, session: Session):
        self.session = session

    def upsert(self, room_id: str, owner_id: str, name: str, data: str) -> CharacterProfile:
        stmt = (
            select(CharacterProfile)
            .where(CharacterProfile.room_id == room_id)
            .where(CharacterProfile.owner_id == owner_id)
            .where(CharacterProfile.name == name)
            .limit(1)
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = CharacterProfile(room_id=room_id, owner_id=owner_id, name=name, data=data)
            self.session.add(row)
        else:
            row.data = data
            row.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def list(self, room_id: str) -> list[CharacterProfile]:
        stmt = select(CharacterProfile).where(CharacterProfile.room_id == room_id)
        return list(self.session.execute(stmt).scalars().all())


class ChannelRoleRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, room_id: str) -> str | None:
        row = self.session.get(ChannelRole, room_id)
        return row.role if row is not None else None

    def set(self, room_id: str, role: str) -> ChannelRole:
        row = self.session.get(ChannelRole, room_id)
        if row is None:
            row = ChannelRole(room_id=room_id, role=role)
            self.session.add(row)
        else:
            row.role = role
            row.updated_at = datetime.utcnow()
        self.session.flush()
        return row
