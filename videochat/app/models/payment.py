"""Membership payments and the MLM commissions they generate."""
from sqlalchemy import String, DateTime, ForeignKey, DECIMAL, Integer, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from videochat.app.core.base import Base
from videochat.app.core.clock import utcnow


class Payment(Base):
    __tablename__ = 'payments'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    # Externally supplied; the unique constraint is the replay guard
    transaction_hash: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    membership_extension: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Set once, under the row lock, by the run that distributed commissions
    commissions_distributed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_payments_user_id', 'user_id'),
        Index('ix_payments_user_status', 'user_id', 'status'),
    )


class MLMCommission(Base):
    __tablename__ = 'mlm_commissions'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    from_user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    to_user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)
    payment_id: Mapped[int] = mapped_column(ForeignKey('payments.id'), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('payment_id', 'level', name='uq_mlm_commissions_payment_level'),
        Index('ix_mlm_commissions_to_user', 'to_user_id'),
        Index('ix_mlm_commissions_to_user_level', 'to_user_id', 'level'),
        Index('ix_mlm_commissions_from_user', 'from_user_id'),
    )
