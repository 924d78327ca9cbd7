"""
Tests for CommissionEngine.distribute.

Covers the level schedule, eligibility skipping, chain termination,
idempotence and the (payment, level) uniqueness backstop.
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import PAYMENT_PENDING
from videochat.app.models.payment import MLMCommission
from videochat.app.services.commissions import (
    CommissionEngine,
    CommissionSchedule,
    CommissionsAlreadyDistributedError,
    PayerMismatchError,
    PaymentNotCompletedError,
    PaymentNotFoundError,
)


async def _commission_count(session: AsyncSession, payment_id: int) -> int:
    result = await session.execute(
        select(func.count(MLMCommission.id)).where(MLMCommission.payment_id == payment_id)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_five_level_schedule(test_session: AsyncSession, make_chain, make_payment):
    payer, sponsors = await make_chain(6)
    payment = await make_payment(payer)

    created = await CommissionEngine(test_session).distribute(payment.id, payer.id)
    await test_session.commit()

    assert [c.level for c in created] == [1, 2, 3, 4, 5]
    assert [c.amount for c in created] == [Decimal("3.5"), Decimal("1"), Decimal("1"), Decimal("1"), Decimal("1")]
    assert sum(c.amount for c in created) == Decimal("7.5")
    assert [c.to_user_id for c in created] == [s.id for s in sponsors[:5]]
    assert all(c.from_user_id == payer.id and c.status == "paid" for c in created)

    # Earnings move together with the commission rows; the sixth sponsor earns nothing
    for sponsor in sponsors:
        await test_session.refresh(sponsor)
    assert sponsors[0].total_earnings == Decimal("3.50")
    assert [s.total_earnings for s in sponsors[1:5]] == [Decimal("1.00")] * 4
    assert sponsors[5].total_earnings == Decimal("0")


@pytest.mark.asyncio
async def test_distribute_is_idempotent(test_session: AsyncSession, make_chain, make_payment):
    payer, sponsors = await make_chain(3)
    payment = await make_payment(payer)
    engine = CommissionEngine(test_session)

    first = await engine.distribute(payment.id, payer.id)
    await test_session.commit()
    second = await engine.distribute(payment.id, payer.id)
    await test_session.commit()

    assert [c.id for c in second] == [c.id for c in first]
    assert await _commission_count(test_session, payment.id) == 3
    await test_session.refresh(sponsors[0])
    assert sponsors[0].total_earnings == Decimal("3.50")


@pytest.mark.asyncio
async def test_expired_sponsor_skipped_walk_continues(test_session: AsyncSession, make_chain, make_payment):
    payer, sponsors = await make_chain(4, expired_levels=(2,))
    payment = await make_payment(payer)

    created = await CommissionEngine(test_session).distribute(payment.id, payer.id)
    await test_session.commit()

    assert [c.level for c in created] == [1, 3, 4]
    assert [c.to_user_id for c in created] == [sponsors[0].id, sponsors[2].id, sponsors[3].id]
    await test_session.refresh(sponsors[1])
    assert sponsors[1].total_earnings == Decimal("0")


@pytest.mark.asyncio
async def test_never_paid_sponsor_skipped(test_session: AsyncSession, make_user, make_payment):
    top = await make_user()
    middle = await make_user(sponsor=top, member=False)
    payer = await make_user(sponsor=middle)
    payment = await make_payment(payer)

    created = await CommissionEngine(test_session).distribute(payment.id, payer.id)

    assert [(c.level, c.to_user_id) for c in created] == [(2, top.id)]
    assert created[0].amount == Decimal("1.00")


@pytest.mark.asyncio
async def test_payer_without_sponsor_gets_no_commissions(test_session: AsyncSession, make_user, make_payment):
    payer = await make_user()
    payment = await make_payment(payer)

    created = await CommissionEngine(test_session).distribute(payment.id, payer.id)

    assert created == []
    assert await _commission_count(test_session, payment.id) == 0


@pytest.mark.asyncio
async def test_short_chain_pays_only_existing_levels(test_session: AsyncSession, make_chain, make_payment):
    payer, _ = await make_chain(2)
    payment = await make_payment(payer)

    created = await CommissionEngine(test_session).distribute(payment.id, payer.id)
    assert [c.level for c in created] == [1, 2]


@pytest.mark.asyncio
async def test_custom_schedule(test_session: AsyncSession, make_chain, make_payment):
    payer, _ = await make_chain(5)
    payment = await make_payment(payer)
    schedule = CommissionSchedule(max_levels=3, level1_amount=Decimal("2"), level_other_amount=Decimal("0.5"))

    created = await CommissionEngine(test_session, schedule).distribute(payment.id, payer.id)

    assert [c.amount for c in created] == [Decimal("2.00"), Decimal("0.50"), Decimal("0.50")]


@pytest.mark.asyncio
async def test_unknown_payment(test_session: AsyncSession, make_user):
    payer = await make_user()
    with pytest.raises(PaymentNotFoundError):
        await CommissionEngine(test_session).distribute(424242, payer.id)


@pytest.mark.asyncio
async def test_payer_mismatch(test_session: AsyncSession, make_user, make_payment):
    payer = await make_user()
    other = await make_user()
    payment = await make_payment(payer)

    with pytest.raises(PayerMismatchError):
        await CommissionEngine(test_session).distribute(payment.id, other.id)


@pytest.mark.asyncio
async def test_pending_payment_not_distributed(test_session: AsyncSession, make_chain, make_payment):
    payer, _ = await make_chain(1)
    payment = await make_payment(payer, status=PAYMENT_PENDING)

    with pytest.raises(PaymentNotCompletedError):
        await CommissionEngine(test_session).distribute(payment.id, payer.id)


@pytest.mark.asyncio
async def test_payment_with_no_eligible_sponsor_is_not_paid_later(
    test_session: AsyncSession, make_chain, make_payment
):
    """A sponsor who renews after the payment was processed gets nothing for it."""
    payer, sponsors = await make_chain(1, expired_levels=(1,))
    payment = await make_payment(payer)
    engine = CommissionEngine(test_session)

    assert await engine.distribute(payment.id, payer.id) == []
    await test_session.commit()
    await test_session.refresh(payment)
    assert payment.commissions_distributed_at is not None

    sponsors[0].membership_expiry = utcnow() + timedelta(days=28)
    await test_session.commit()

    assert await engine.distribute(payment.id, payer.id) == []
    await test_session.commit()

    assert await _commission_count(test_session, payment.id) == 0
    await test_session.refresh(sponsors[0])
    assert sponsors[0].total_earnings == Decimal("0")


@pytest.mark.asyncio
async def test_unique_level_constraint_is_backstop(test_session: AsyncSession, make_chain, make_payment):
    """A concurrent run that already wrote a level makes this run fail as a whole."""
    payer, sponsors = await make_chain(2)
    payment = await make_payment(payer)
    # Rows of a run whose payment mark is not visible yet
    test_session.add(MLMCommission(
        from_user_id=payer.id,
        to_user_id=sponsors[0].id,
        level=1,
        amount=Decimal("3.50"),
        payment_id=payment.id,
        status="paid",
    ))
    await test_session.commit()
    payment_id, payer_id = payment.id, payer.id

    with pytest.raises(CommissionsAlreadyDistributedError):
        await CommissionEngine(test_session).distribute(payment_id, payer_id)
    await test_session.rollback()

    assert await _commission_count(test_session, payment_id) == 1
    await test_session.refresh(sponsors[1])
    assert sponsors[1].total_earnings == Decimal("0")
