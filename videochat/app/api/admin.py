from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.api.deps import (
    get_commission_schedule,
    get_membership_policy,
    get_moderation_policy,
    get_session,
    handle_service_error,
    require_admin,
)
from videochat.app.core.clock import utcnow
from videochat.app.core.constants import PAYMENT_COMPLETED, ZERO
from videochat.app.core.exceptions import ServiceError
from videochat.app.core.logging import get_logger
from videochat.app.models.moderation import Expulsion, Voting
from videochat.app.models.payment import MLMCommission, Payment
from videochat.app.models.room import Room
from videochat.app.models.user import User
from videochat.app.schemas import (
    ExpireResponse,
    ModerationLogResponse,
    PaymentResultResponse,
    UserResponse,
    UserStatusUpdate,
)
from videochat.app.services.commissions import CommissionSchedule
from videochat.app.services.moderation import ModerationPolicy, ModerationService
from videochat.app.services.payments import MembershipPolicy, PaymentService
from videochat.app.services.users import UserService

router = APIRouter()
logger = get_logger(__name__)


@router.get("/dashboard")
async def dashboard(
    _admin: int = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = today.replace(day=1)

    async def scalar(query):
        return (await session.execute(query)).scalar_one()

    commissions = await scalar(select(func.sum(MLMCommission.amount)))
    revenue = await scalar(
        select(func.sum(Payment.amount)).where(
            Payment.status == PAYMENT_COMPLETED, Payment.created_at >= month_start
        )
    )
    return {
        "total_users": await scalar(select(func.count(User.id))),
        "active_members": await scalar(select(func.count(User.id)).where(User.membership_expiry > now)),
        "registrations_today": await scalar(select(func.count(User.id)).where(User.created_at >= today)),
        "total_rooms": await scalar(select(func.count(Room.id))),
        "active_rooms": await scalar(select(func.count(Room.id)).where(Room.current_participants > 0)),
        "total_commissions": commissions if commissions is not None else ZERO,
        "total_votings": await scalar(select(func.count(Voting.id))),
        "total_expulsions": await scalar(select(func.count(Expulsion.id))),
        "revenue_this_month": revenue if revenue is not None else ZERO,
    }


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    _admin: int = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await UserService(session).get_user_info(user_id)
    except ServiceError as e:
        handle_service_error(e)


@router.put("/users/{user_id}/status", response_model=UserResponse)
async def set_user_status(
    user_id: int,
    data: UserStatusUpdate,
    admin_id: int = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    service = UserService(session)
    try:
        await service.set_status(admin_id, user_id, data.status, data.reason)
        await session.commit()
        return await service.get_user_info(user_id)
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.post("/payments/{payment_id}/verify", response_model=PaymentResultResponse)
async def verify_payment(
    payment_id: int,
    admin_id: int = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    policy: MembershipPolicy = Depends(get_membership_policy),
    schedule: CommissionSchedule = Depends(get_commission_schedule),
):
    try:
        result = await PaymentService(session, policy, schedule).verify_payment(payment_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)

    logger.info("Payment verified by admin", payment_id=payment_id, admin_id=admin_id)
    return {
        "payment": result.payment,
        "commissions": result.commissions,
        "membership_expiry": result.new_expiry,
    }


@router.get("/moderation/logs", response_model=List[ModerationLogResponse])
async def moderation_logs(
    log_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _admin: int = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await ModerationService(session).list_logs(log_type, limit, offset)


@router.post("/votings/expire", response_model=ExpireResponse)
async def expire_votings(
    _admin: int = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    policy: ModerationPolicy = Depends(get_moderation_policy),
):
    """Run the expiry sweep now instead of waiting for the scheduler."""
    expired = await ModerationService(session, policy).expire_stale_votings()
    await session.commit()
    return {"expired": expired}
