from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


TurnIDType = BigInteger().with_variant(Integer, "sqlite")


class Turn(Base):
    __tablename__ = "cae_turns"

    id: Mapped[int] = mapped_column(TurnIDType, primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(String(64), nullable=False)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('user','assistant','agent')", name="turn_role_valid"),
    )


Index("ix_cae_turn_room_live", Turn.room_id, Turn.deleted, Turn.created_at, Turn.id)


class Summary(Base):
    __tablename__ = "cae_summaries"

    room_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class CharacterProfile(TimestampMixin, Base):
    __tablename__ = "cae_character_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    data: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        UniqueConstraint("room_id", "owner_id", "name", name="uq_cae_profile_room_owner_name"),
    )


Index("ix_cae_profile_room", CharacterProfile.room_id)


class ChannelRole(TimestampMixin, Base):
    __tablename__ = "cae_channel_roles"

    room_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
