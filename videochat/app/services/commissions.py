# videochat/app/services/commissions.py
"""
Commission engine: pays a flat schedule up the sponsor chain
once per completed membership payment.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import COMMISSION_PAID, PAYMENT_COMPLETED, ONE_CENT
from videochat.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from videochat.app.core.logging import get_logger
from videochat.app.core.metrics import commissions_paid_total
from videochat.app.models.payment import Payment, MLMCommission
from videochat.app.models.user import User
from videochat.app.services.network import NetworkResolver

logger = get_logger(__name__)


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id: int):
        super().__init__(f"Payment {payment_id} not found")


class PayerMismatchError(ValidationError):
    def __init__(self, payment_id: int, payer_id: int):
        super().__init__(f"Payment {payment_id} was not made by user {payer_id}")


class PaymentNotCompletedError(ConflictError):
    def __init__(self, payment_id: int):
        super().__init__(f"Payment {payment_id} is not completed")


class CommissionsAlreadyDistributedError(ConflictError):
    def __init__(self, payment_id: int):
        super().__init__(f"Commissions for payment {payment_id} were already distributed")


@dataclass(frozen=True)
class CommissionSchedule:
    """Flat schedule: level 1 earns one amount, levels 2..max_levels another."""
    max_levels: int = 5
    level1_amount: Decimal = Decimal("3.50")
    level_other_amount: Decimal = Decimal("1.00")

    def amount_for(self, level: int) -> Decimal:
        if level < 1 or level > self.max_levels:
            raise ValueError(f"level {level} outside 1..{self.max_levels}")
        amount = self.level1_amount if level == 1 else self.level_other_amount
        return Decimal(amount).quantize(ONE_CENT)

    def amounts(self) -> List[Decimal]:
        return [self.amount_for(level) for level in range(1, self.max_levels + 1)]

    @classmethod
    def from_settings(cls, settings) -> "CommissionSchedule":
        return cls(
            max_levels=settings.MLM_MAX_LEVELS,
            level1_amount=settings.MLM_LEVEL_1_COMMISSION,
            level_other_amount=settings.MLM_LEVEL_OTHER_COMMISSION,
        )


class CommissionEngine:
    """Distributes commissions for a payment. Caller must commit the session."""

    def __init__(self, session: AsyncSession, schedule: Optional[CommissionSchedule] = None):
        self.session = session
        self.schedule = schedule or CommissionSchedule()
        self.network = NetworkResolver(session)

    async def _get_payment_for_update(self, payment_id: int) -> Optional[Payment]:
        """Lock the payment row so concurrent distributions of it serialize."""
        result = await self.session.execute(
            select(Payment).where(Payment.id == payment_id).with_for_update().execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_commissions(self, payment_id: int) -> List[MLMCommission]:
        result = await self.session.execute(
            select(MLMCommission)
            .where(MLMCommission.payment_id == payment_id)
            .order_by(MLMCommission.level)
        )
        return list(result.scalars().all())

    async def distribute(self, payment_id: int, payer_user_id: int) -> List[MLMCommission]:
        """
        Walk the payer's upline and pay every eligible sponsor.

        A sponsor is eligible while their membership is active; an ineligible
        sponsor earns nothing but the walk continues past them. Each commission
        row is written together with the matching earnings increment.

        The payment is marked as distributed even when nobody was eligible;
        re-running for a marked payment returns the existing rows and writes
        nothing, so a sponsor who renews later is not paid retroactively.

        Raises:
            PaymentNotFoundError: payment does not exist
            PayerMismatchError: payment belongs to another user
            PaymentNotCompletedError: payment is still pending
            CommissionsAlreadyDistributedError: a concurrent run won the race
        """
        payment = await self._get_payment_for_update(payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        if payment.user_id != payer_user_id:
            raise PayerMismatchError(payment_id, payer_user_id)
        if payment.status != PAYMENT_COMPLETED:
            raise PaymentNotCompletedError(payment_id)

        if payment.commissions_distributed_at is not None:
            existing = await self.get_commissions(payment_id)
            logger.info("Commissions already distributed", payment_id=payment_id, count=len(existing))
            return existing

        now = utcnow()
        # Marks the payment even when no sponsor is eligible
        payment.commissions_distributed_at = now
        created: List[MLMCommission] = []
        try:
            async for level, sponsor in self.network.iter_upline(payer_user_id, self.schedule.max_levels):
                if not sponsor.has_active_membership(now):
                    logger.debug("Sponsor not eligible", payment_id=payment_id, level=level, sponsor_id=sponsor.id)
                    continue

                amount = self.schedule.amount_for(level)
                commission = MLMCommission(
                    from_user_id=payer_user_id,
                    to_user_id=sponsor.id,
                    level=level,
                    amount=amount,
                    payment_id=payment_id,
                    status=COMMISSION_PAID,
                )
                self.session.add(commission)
                await self.session.execute(
                    update(User)
                    .where(User.id == sponsor.id)
                    .values(total_earnings=User.total_earnings + amount)
                    .execution_options(synchronize_session="fetch")
                )
                created.append(commission)
            await self.session.flush()
        except IntegrityError:
            logger.warning("Concurrent commission distribution rejected", payment_id=payment_id)
            raise CommissionsAlreadyDistributedError(payment_id)

        for commission in created:
            commissions_paid_total.labels(level=str(commission.level)).inc()

        logger.info(
            "Commissions distributed",
            payment_id=payment_id,
            payer_id=payer_user_id,
            count=len(created),
            total=str(sum((c.amount for c in created), Decimal("0"))),
        )
        return created
