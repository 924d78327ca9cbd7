from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.api.deps import (
    get_commission_schedule,
    get_current_user_id,
    get_membership_policy,
    get_session,
    handle_service_error,
)
from videochat.app.core.exceptions import ServiceError
from videochat.app.core.logging import get_logger
from videochat.app.schemas import (
    PaymentCreate,
    PaymentDetailResponse,
    PaymentListResponse,
    PaymentResultResponse,
)
from videochat.app.services.commissions import CommissionSchedule
from videochat.app.services.payments import MembershipPolicy, PaymentService

router = APIRouter()
logger = get_logger(__name__)


@router.post("", response_model=PaymentResultResponse, status_code=201)
async def create_payment(
    data: PaymentCreate,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    policy: MembershipPolicy = Depends(get_membership_policy),
    schedule: CommissionSchedule = Depends(get_commission_schedule),
):
    """
    Buy one membership period. The transaction hash may be used only once;
    with auto-confirm the payment completes and commissions are paid at once.
    """
    logger.info("Processing payment", user_id=user_id, currency=data.currency, amount=str(data.amount))
    service = PaymentService(session, policy, schedule)
    try:
        result = await service.process_payment(
            user_id=user_id,
            amount=data.amount,
            currency=data.currency,
            transaction_hash=data.transaction_hash,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Payment rejected", user_id=user_id, error=e.message, error_code=e.status_code)
        handle_service_error(e)

    return {
        "payment": result.payment,
        "commissions": result.commissions,
        "membership_expiry": result.new_expiry,
    }


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    items, total = await PaymentService(session).list_payments(user_id, page, limit)
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/stats")
async def payment_stats(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    policy: MembershipPolicy = Depends(get_membership_policy),
):
    try:
        return await PaymentService(session, policy).get_payment_stats(user_id)
    except ServiceError as e:
        handle_service_error(e)


@router.get("/{payment_id}", response_model=PaymentDetailResponse)
async def get_payment(
    payment_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        payment, commissions = await PaymentService(session).get_payment(user_id, payment_id)
    except ServiceError as e:
        handle_service_error(e)
    return {"payment": payment, "commissions": commissions}
