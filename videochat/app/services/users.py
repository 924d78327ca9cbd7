# videochat/app/services/users.py
"""
User service - registration, profile lookup and admin status changes.
"""

from typing import Optional, Dict, Any

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import USER_STATUSES, LOG_STATUS_TYPES, ROLE_ADMIN, ROLE_USER
from videochat.app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from videochat.app.core.logging import get_logger
from videochat.app.models.moderation import ModerationLog
from videochat.app.models.user import User

logger = get_logger(__name__)


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")


class SponsorNotFoundError(NotFoundError):
    def __init__(self, sponsor_code: str):
        super().__init__(f"Sponsor '{sponsor_code}' not found")


class UserExistsError(ConflictError):
    def __init__(self):
        super().__init__("Username or email already registered")


class InvalidStatusError(ValidationError):
    def __init__(self, status: str):
        super().__init__(f"Invalid status '{status}'. Must be one of: {', '.join(USER_STATUSES)}")


class AdminRequiredError(ForbiddenError):
    def __init__(self):
        super().__init__("Admin role required")


class UserService:
    """Service class for user operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)
        return user

    async def find_by_username(self, username: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def register_user(
        self,
        username: str,
        email: str,
        first_name: str,
        last_name: str,
        sponsor_code: Optional[str] = None,
    ) -> User:
        """
        Create a user. The sponsor (referenced by username) is bound permanently.

        Raises:
            UserExistsError: username or email taken
            SponsorNotFoundError: sponsor_code does not match any user
        """
        taken = await self.session.execute(
            select(User.id).where(or_(User.username == username, User.email == email))
        )
        if taken.first():
            raise UserExistsError()

        sponsor_id = None
        if sponsor_code:
            sponsor = await self.find_by_username(sponsor_code)
            if not sponsor:
                raise SponsorNotFoundError(sponsor_code)
            sponsor_id = sponsor.id

        user = User(
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=ROLE_USER,
            status="active",
            sponsor_id=sponsor_id,
            total_earnings=0,
        )
        self.session.add(user)
        await self.session.flush()
        logger.info("User registered", user_id=user.id, sponsor_id=sponsor_id)
        return user

    async def get_user_info(self, user_id: int) -> Dict[str, Any]:
        user = await self.get_user(user_id)
        now = utcnow()
        return {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "role": user.role,
            "status": user.status,
            "sponsor_id": user.sponsor_id,
            "membership_expiry": user.membership_expiry,
            "has_active_membership": user.has_active_membership(now),
            "total_earnings": user.total_earnings or 0,
            "created_at": user.created_at,
        }

    async def set_status(self, admin_id: int, user_id: int, status: str, reason: Optional[str] = None) -> User:
        """
        Change an account status and write the audit entry.
        Caller must commit the session after this returns.
        """
        admin = await self.get_user(admin_id)
        if admin.role != ROLE_ADMIN:
            raise AdminRequiredError()
        if status not in USER_STATUSES:
            raise InvalidStatusError(status)

        user = await self.get_user(user_id)
        previous = user.status
        user.status = status

        details = f"User {user.username} status changed from {previous} to {status} by admin"
        if reason:
            details += f": {reason}"
        self.session.add(ModerationLog(
            type=LOG_STATUS_TYPES[status],
            initiator_id=admin_id,
            target_id=user_id,
            details=details,
            meta={"previous_status": previous, "new_status": status, "reason": reason},
        ))
        await self.session.flush()
        logger.info("User status changed", user_id=user_id, admin_id=admin_id, status=status)
        return user
