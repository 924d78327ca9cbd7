"""Democratic moderation: votings, ballots, expulsions and the audit log."""
from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, Boolean, JSON, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional, List, Dict, Any
from videochat.app.core.base import Base
from videochat.app.core.clock import utcnow


class Voting(Base):
    __tablename__ = 'votings'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(ForeignKey('rooms.id'), nullable=False)
    initiator_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    target_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    required_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    # Snapshot taken at creation; later joins/leaves do not move the threshold
    total_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    result: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # expelled | failed
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            'uq_votings_open_target',
            'room_id', 'target_id',
            unique=True,
            postgresql_where=text('is_completed = false'),
            sqlite_where=text('is_completed = 0'),
        ),
        Index('ix_votings_open_created', 'is_completed', 'created_at'),
        Index('ix_votings_initiator_created', 'initiator_id', 'created_at'),
    )


class Vote(Base):
    __tablename__ = 'votes'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    voting_id: Mapped[int] = mapped_column(ForeignKey('votings.id'), nullable=False)
    voter_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('voting_id', 'voter_id', name='uq_votes_voting_voter'),
    )


class Expulsion(Base):
    __tablename__ = 'expulsions'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    voting_id: Mapped[int] = mapped_column(ForeignKey('votings.id'), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    room_id: Mapped[int] = mapped_column(ForeignKey('rooms.id'), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    expelled_by: Mapped[List[int]] = mapped_column(JSON(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_expulsions_user_room', 'user_id', 'room_id'),
    )


class ModerationLog(Base):
    """Append-only audit trail."""
    __tablename__ = 'moderation_logs'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    room_id: Mapped[Optional[int]] = mapped_column(ForeignKey('rooms.id'), nullable=True)
    initiator_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    target_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column('metadata', JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_moderation_logs_room_created', 'room_id', 'created_at'),
        Index('ix_moderation_logs_type', 'type'),
    )
