# videochat/app/services/payments.py
"""
Payment service - membership purchases.

A payment is identified externally by its transaction hash; the unique
constraint on that hash is the only replay guard. Completing a payment
extends the payer's membership and triggers commission distribution in
the same transaction.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import (
    PAYMENT_COMPLETED,
    PAYMENT_PENDING,
    TX_HASH_MIN_LENGTH,
    TX_HASH_MAX_LENGTH,
    ZERO,
)
from videochat.app.core.exceptions import ConflictError, ValidationError
from videochat.app.core.logging import get_logger
from videochat.app.core.metrics import payments_processed_total
from videochat.app.models.payment import Payment, MLMCommission
from videochat.app.models.user import User
from videochat.app.services.commissions import CommissionEngine, CommissionSchedule, PaymentNotFoundError
from videochat.app.services.users import UserNotFoundError

logger = get_logger(__name__)


class InvalidCurrencyError(ValidationError):
    def __init__(self, currency: str, accepted: Tuple[str, ...]):
        super().__init__(f"Currency '{currency}' not accepted. Use one of: {', '.join(accepted)}")


class InvalidAmountError(ValidationError):
    def __init__(self, expected: Decimal):
        super().__init__(f"Payment amount must be ${expected}")


class InvalidTransactionHashError(ValidationError):
    def __init__(self):
        super().__init__(
            f"Transaction hash must be {TX_HASH_MIN_LENGTH}-{TX_HASH_MAX_LENGTH} characters long"
        )


class DuplicateTransactionError(ConflictError):
    def __init__(self):
        super().__init__("Transaction hash already used")


class PaymentAlreadyCompletedError(ConflictError):
    def __init__(self, payment_id: int):
        super().__init__(f"Payment {payment_id} already verified")


@dataclass(frozen=True)
class MembershipPolicy:
    price: Decimal = Decimal("10")
    duration_days: int = 28
    currencies: Tuple[str, ...] = ("USDT", "USDC", "BUSD")
    auto_confirm: bool = True

    @classmethod
    def from_settings(cls, settings) -> "MembershipPolicy":
        return cls(
            price=settings.MEMBERSHIP_PRICE_USD,
            duration_days=settings.MEMBERSHIP_DURATION_DAYS,
            currencies=tuple(settings.accepted_currencies_list),
            auto_confirm=settings.PAYMENT_AUTO_CONFIRM,
        )


@dataclass
class PaymentResult:
    payment: Payment
    commissions: List[MLMCommission] = field(default_factory=list)
    new_expiry: Optional[datetime] = None

    @property
    def membership_extended(self) -> bool:
        return self.new_expiry is not None


class PaymentService:
    """Service class for membership payments. Caller must commit the session."""

    def __init__(
        self,
        session: AsyncSession,
        policy: Optional[MembershipPolicy] = None,
        schedule: Optional[CommissionSchedule] = None,
    ):
        self.session = session
        self.policy = policy or MembershipPolicy()
        self.commissions = CommissionEngine(session, schedule)

    async def _get_user_for_update(self, user_id: int) -> User:
        result = await self.session.execute(
            select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFoundError(user_id)
        return user

    def _validate(self, amount, currency: str, transaction_hash: str) -> Decimal:
        if currency not in self.policy.currencies:
            raise InvalidCurrencyError(currency, self.policy.currencies)
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(self.policy.price)
        if value != Decimal(self.policy.price):
            raise InvalidAmountError(self.policy.price)
        if not transaction_hash or not (
            TX_HASH_MIN_LENGTH <= len(transaction_hash) <= TX_HASH_MAX_LENGTH
        ):
            raise InvalidTransactionHashError()
        return value

    async def process_payment(
        self,
        user_id: int,
        amount,
        currency: str,
        transaction_hash: str,
    ) -> PaymentResult:
        """
        Record a membership payment and, when auto-confirm is on, complete it.

        Raises:
            UserNotFoundError: payer does not exist
            InvalidCurrencyError / InvalidAmountError / InvalidTransactionHashError
            DuplicateTransactionError: transaction hash already used
        """
        value = self._validate(amount, currency, transaction_hash)
        user = await self._get_user_for_update(user_id)

        existing = await self.session.execute(
            select(Payment.id).where(Payment.transaction_hash == transaction_hash)
        )
        if existing.first():
            raise DuplicateTransactionError()

        payment = Payment(
            user_id=user_id,
            amount=value,
            currency=currency,
            transaction_hash=transaction_hash,
            status=PAYMENT_PENDING,
            membership_extension=self.policy.duration_days,
        )
        self.session.add(payment)
        try:
            await self.session.flush()
        except IntegrityError:
            raise DuplicateTransactionError()

        if not self.policy.auto_confirm:
            payments_processed_total.labels(currency=currency, status=PAYMENT_PENDING).inc()
            logger.info("Payment recorded, awaiting verification", payment_id=payment.id, user_id=user_id)
            return PaymentResult(payment=payment)

        payment.status = PAYMENT_COMPLETED
        payment.completed_at = utcnow()
        return await self._complete(payment, user)

    async def verify_payment(self, payment_id: int) -> PaymentResult:
        """Move a pending payment to completed exactly once, then apply its effects."""
        now = utcnow()
        result = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
            .values(status=PAYMENT_COMPLETED, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            payment = await self.session.get(Payment, payment_id)
            if not payment:
                raise PaymentNotFoundError(payment_id)
            raise PaymentAlreadyCompletedError(payment_id)

        payment = await self.session.get(Payment, payment_id, populate_existing=True)
        user = await self._get_user_for_update(payment.user_id)
        return await self._complete(payment, user)

    async def _complete(self, payment: Payment, user: User) -> PaymentResult:
        now = utcnow()
        base = user.membership_expiry if user.membership_expiry and user.membership_expiry > now else now
        user.membership_expiry = base + timedelta(days=payment.membership_extension)
        await self.session.flush()

        commissions = await self.commissions.distribute(payment.id, user.id)

        payments_processed_total.labels(currency=payment.currency, status=PAYMENT_COMPLETED).inc()
        logger.info(
            "Payment completed",
            payment_id=payment.id,
            user_id=user.id,
            new_expiry=user.membership_expiry.isoformat(),
            commissions=len(commissions),
        )
        return PaymentResult(payment=payment, commissions=commissions, new_expiry=user.membership_expiry)

    async def list_payments(self, user_id: int, page: int = 1, limit: int = 20) -> Tuple[List[Payment], int]:
        total = (await self.session.execute(
            select(func.count(Payment.id)).where(Payment.user_id == user_id)
        )).scalar_one()
        result = await self.session.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_payment(self, user_id: int, payment_id: int) -> Tuple[Payment, List[MLMCommission]]:
        """Owner-only lookup; another user's payment reads as missing."""
        payment = await self.session.get(Payment, payment_id)
        if not payment or payment.user_id != user_id:
            raise PaymentNotFoundError(payment_id)
        return payment, await self.commissions.get_commissions(payment_id)

    async def get_payment_stats(self, user_id: int) -> Dict[str, Any]:
        user = await self.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)
        now = utcnow()

        completed = select(Payment).where(
            Payment.user_id == user_id, Payment.status == PAYMENT_COMPLETED
        ).subquery()
        row = (await self.session.execute(
            select(func.count(completed.c.id), func.sum(completed.c.amount), func.max(completed.c.created_at))
        )).one()
        total_payments, total_spent, last_payment_at = row

        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        monthly = (await self.session.execute(
            select(func.count(Payment.id)).where(
                Payment.user_id == user_id,
                Payment.status == PAYMENT_COMPLETED,
                Payment.created_at >= month_start,
            )
        )).scalar_one()

        active = user.has_active_membership(now)
        days_left = 0
        if active:
            remaining = user.membership_expiry - now
            days_left = remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)

        return {
            "total_payments": total_payments,
            "total_spent": total_spent if total_spent is not None else ZERO,
            "monthly_payments": monthly,
            "has_active_membership": active,
            "days_until_expiry": days_left,
            "last_payment_date": last_payment_at,
            "membership_expiry": user.membership_expiry,
        }
