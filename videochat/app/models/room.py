from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, Boolean, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from videochat.app.core.base import Base
from videochat.app.core.clock import utcnow


class Room(Base):
    __tablename__ = 'rooms'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    topic: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    creator_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, default=10)
    requires_membership: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Denormalized counters, written by the room and moderation services only
    current_participants: Mapped[int] = mapped_column(Integer, default=0)
    total_votings: Mapped[int] = mapped_column(Integer, default=0)
    total_expulsions: Mapped[int] = mapped_column(Integer, default=0)
    last_activity: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_rooms_is_active', 'is_active'),
        Index('ix_rooms_creator_id', 'creator_id'),
    )


class RoomMember(Base):
    """Presence of a user in a room; left_at IS NULL means currently present."""
    __tablename__ = 'room_members'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(ForeignKey('rooms.id'), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    left_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            'uq_room_members_open',
            'room_id', 'user_id',
            unique=True,
            postgresql_where=text('left_at IS NULL'),
            sqlite_where=text('left_at IS NULL'),
        ),
        Index('ix_room_members_user_id', 'user_id'),
    )
