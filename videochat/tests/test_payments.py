"""
Tests for PaymentService: submission, replay protection, membership
extension and manual verification.
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import PAYMENT_COMPLETED, PAYMENT_PENDING
from videochat.app.models.payment import MLMCommission, Payment
from videochat.app.services.commissions import PaymentNotFoundError
from videochat.app.services.payments import (
    DuplicateTransactionError,
    InvalidAmountError,
    InvalidCurrencyError,
    InvalidTransactionHashError,
    MembershipPolicy,
    PaymentAlreadyCompletedError,
    PaymentService,
)
from videochat.app.services.users import UserNotFoundError


TX = "0xabc1234567890def"


async def _count(session: AsyncSession, model) -> int:
    return (await session.execute(select(func.count(model.id)))).scalar_one()


# ============================================
# process_payment
# ============================================

@pytest.mark.asyncio
async def test_payment_completes_and_pays_upline(test_session: AsyncSession, make_chain):
    payer, sponsors = await make_chain(2)

    result = await PaymentService(test_session).process_payment(payer.id, Decimal("10"), "USDT", TX)
    await test_session.commit()

    assert result.payment.status == PAYMENT_COMPLETED
    assert result.payment.completed_at is not None
    assert result.payment.membership_extension == 28
    assert [c.level for c in result.commissions] == [1, 2]
    assert result.membership_extended

    await test_session.refresh(sponsors[0])
    assert sponsors[0].total_earnings == Decimal("3.50")


@pytest.mark.asyncio
async def test_first_payment_starts_membership_now(test_session: AsyncSession, make_user):
    user = await make_user(member=False)
    before = utcnow()

    result = await PaymentService(test_session).process_payment(user.id, 10, "USDC", TX)

    assert result.new_expiry >= before + timedelta(days=28)
    assert result.new_expiry <= utcnow() + timedelta(days=28)


@pytest.mark.asyncio
async def test_renewal_extends_from_current_expiry(test_session: AsyncSession, make_user):
    expiry = utcnow() + timedelta(days=10)
    user = await make_user(expiry=expiry)

    result = await PaymentService(test_session).process_payment(user.id, 10, "USDT", TX)

    assert result.new_expiry == expiry + timedelta(days=28)


@pytest.mark.asyncio
async def test_lapsed_membership_extends_from_now(test_session: AsyncSession, make_user):
    user = await make_user(expiry=utcnow() - timedelta(days=30))
    before = utcnow()

    result = await PaymentService(test_session).process_payment(user.id, 10, "USDT", TX)

    assert result.new_expiry >= before + timedelta(days=28)


@pytest.mark.asyncio
async def test_replayed_hash_rejected_without_new_commissions(test_session: AsyncSession, make_chain):
    payer, _ = await make_chain(1)
    service = PaymentService(test_session)
    await service.process_payment(payer.id, 10, "USDT", TX)
    await test_session.commit()

    with pytest.raises(DuplicateTransactionError) as exc:
        await service.process_payment(payer.id, 10, "USDT", TX)
    assert exc.value.status_code == 409
    await test_session.rollback()

    assert await _count(test_session, Payment) == 1
    assert await _count(test_session, MLMCommission) == 1


@pytest.mark.asyncio
async def test_hash_is_global_across_users(test_session: AsyncSession, make_user):
    first = await make_user()
    second = await make_user()
    service = PaymentService(test_session)
    await service.process_payment(first.id, 10, "USDT", TX)
    await test_session.commit()

    with pytest.raises(DuplicateTransactionError):
        await service.process_payment(second.id, 10, "USDT", TX)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount,currency,tx_hash,error", [
    (Decimal("10"), "EUR", TX, InvalidCurrencyError),
    (Decimal("9.99"), "USDT", TX, InvalidAmountError),
    (Decimal("20"), "USDT", TX, InvalidAmountError),
    (Decimal("10"), "USDT", "short", InvalidTransactionHashError),
    (Decimal("10"), "USDT", "", InvalidTransactionHashError),
])
async def test_invalid_submission_rejected(
    test_session: AsyncSession, make_user, amount, currency, tx_hash, error
):
    user = await make_user()
    with pytest.raises(error) as exc:
        await PaymentService(test_session).process_payment(user.id, amount, currency, tx_hash)
    assert exc.value.status_code == 400
    assert await _count(test_session, Payment) == 0


@pytest.mark.asyncio
async def test_unknown_payer(test_session: AsyncSession):
    with pytest.raises(UserNotFoundError):
        await PaymentService(test_session).process_payment(9999, 10, "USDT", TX)


# ============================================
# Manual verification
# ============================================

@pytest.mark.asyncio
async def test_pending_until_verified(test_session: AsyncSession, make_chain):
    payer, sponsors = await make_chain(1)
    service = PaymentService(test_session, policy=MembershipPolicy(auto_confirm=False))
    old_expiry = payer.membership_expiry

    result = await service.process_payment(payer.id, 10, "USDT", TX)
    await test_session.commit()

    assert result.payment.status == PAYMENT_PENDING
    assert result.commissions == []
    assert not result.membership_extended
    await test_session.refresh(payer)
    assert payer.membership_expiry == old_expiry

    verified = await service.verify_payment(result.payment.id)
    await test_session.commit()

    assert verified.payment.status == PAYMENT_COMPLETED
    assert len(verified.commissions) == 1
    assert verified.new_expiry == old_expiry + timedelta(days=28)


@pytest.mark.asyncio
async def test_verify_twice_conflicts(test_session: AsyncSession, make_chain):
    payer, _ = await make_chain(1)
    service = PaymentService(test_session, policy=MembershipPolicy(auto_confirm=False))
    result = await service.process_payment(payer.id, 10, "USDT", TX)
    await test_session.commit()
    await service.verify_payment(result.payment.id)
    await test_session.commit()

    with pytest.raises(PaymentAlreadyCompletedError):
        await service.verify_payment(result.payment.id)
    await test_session.rollback()

    assert await _count(test_session, MLMCommission) == 1


@pytest.mark.asyncio
async def test_verify_unknown_payment(test_session: AsyncSession):
    with pytest.raises(PaymentNotFoundError):
        await PaymentService(test_session).verify_payment(31337)


# ============================================
# Queries
# ============================================

@pytest.mark.asyncio
async def test_get_payment_is_owner_only(test_session: AsyncSession, make_chain, make_user):
    payer, _ = await make_chain(1)
    stranger = await make_user()
    service = PaymentService(test_session)
    result = await service.process_payment(payer.id, 10, "USDT", TX)
    await test_session.commit()

    payment, commissions = await service.get_payment(payer.id, result.payment.id)
    assert payment.id == result.payment.id
    assert len(commissions) == 1

    with pytest.raises(PaymentNotFoundError):
        await service.get_payment(stranger.id, result.payment.id)


@pytest.mark.asyncio
async def test_list_payments_paginates(test_session: AsyncSession, make_user):
    user = await make_user()
    service = PaymentService(test_session)
    for i in range(3):
        await service.process_payment(user.id, 10, "USDT", f"{TX}{i}")
    await test_session.commit()

    first_page, total = await service.list_payments(user.id, page=1, limit=2)
    second_page, _ = await service.list_payments(user.id, page=2, limit=2)

    assert total == 3
    assert len(first_page) == 2
    assert len(second_page) == 1


@pytest.mark.asyncio
async def test_payment_stats(test_session: AsyncSession, make_user):
    user = await make_user(member=False)
    service = PaymentService(test_session)

    empty = await service.get_payment_stats(user.id)
    assert empty["total_payments"] == 0
    assert empty["total_spent"] == Decimal("0")
    assert empty["has_active_membership"] is False
    assert empty["days_until_expiry"] == 0

    await service.process_payment(user.id, 10, "USDT", TX)
    await service.process_payment(user.id, 10, "BUSD", TX + "x")
    await test_session.commit()

    stats = await service.get_payment_stats(user.id)
    assert stats["total_payments"] == 2
    assert Decimal(stats["total_spent"]) == Decimal("20")
    assert stats["monthly_payments"] == 2
    assert stats["has_active_membership"] is True
    assert stats["days_until_expiry"] == 56
