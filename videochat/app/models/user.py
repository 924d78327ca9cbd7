from sqlalchemy import String, DateTime, ForeignKey, DECIMAL, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from videochat.app.core.base import Base
from videochat.app.core.clock import utcnow


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default='user')
    status: Mapped[str] = mapped_column(String(20), default='active')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # MLM: sponsor is set once at registration and never re-parented
    sponsor_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    membership_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Mutated only by the commission engine
    total_earnings: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), default=0)

    __table_args__ = (
        Index('ix_users_sponsor_id', 'sponsor_id'),
        Index('ix_users_membership_expiry', 'membership_expiry'),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def has_active_membership(self, now: datetime) -> bool:
        """Membership counts only while its expiry lies strictly in the future."""
        return self.membership_expiry is not None and self.membership_expiry > now
