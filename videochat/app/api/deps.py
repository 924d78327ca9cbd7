from typing import AsyncGenerator, NoReturn, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.constants import ROLE_ADMIN
from videochat.app.core.database import async_session
from videochat.app.core.exceptions import InvariantError, ServiceError
from videochat.app.core.logging import bind_request_context, get_logger
from videochat.app.core.settings import get_settings
from videochat.app.models.user import User
from videochat.app.services.commissions import CommissionSchedule
from videochat.app.services.moderation import ModerationPolicy
from videochat.app.services.payments import MembershipPolicy

logger = get_logger(__name__)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request; handlers commit or roll back themselves."""
    async with async_session() as session:
        yield session


async def get_current_user_id(x_user_id: Optional[int] = Header(None, alias="X-User-Id")) -> int:
    """The acting user, as asserted by the gateway in front of this service."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    bind_request_context(user_id=x_user_id)
    return x_user_id


async def require_admin(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> int:
    user = await session.get(User, user_id)
    if not user or user.role != ROLE_ADMIN:
        logger.warning("Admin endpoint rejected", user_id=user_id)
        raise HTTPException(status_code=403, detail="Admin role required")
    return user_id


def get_commission_schedule() -> CommissionSchedule:
    return CommissionSchedule.from_settings(get_settings())


def get_membership_policy() -> MembershipPolicy:
    return MembershipPolicy.from_settings(get_settings())


def get_moderation_policy() -> ModerationPolicy:
    return ModerationPolicy.from_settings(get_settings())


def handle_service_error(e: ServiceError) -> NoReturn:
    """Convert service exceptions to HTTP exceptions; invariant details stay in the log."""
    if isinstance(e, InvariantError):
        logger.error("Invariant violated", error=e.message)
        raise HTTPException(status_code=500, detail="Internal error")
    raise HTTPException(status_code=e.status_code, detail=e.message)
