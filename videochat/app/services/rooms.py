# videochat/app/services/rooms.py
"""
Room service - chat rooms and who is currently in them.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import MAX_ROOM_PARTICIPANTS, MIN_ROOM_PARTICIPANTS
from videochat.app.core.exceptions import ConflictError, ForbiddenError, ValidationError
from videochat.app.core.logging import get_logger
from videochat.app.models.room import Room, RoomMember
from videochat.app.models.user import User
from videochat.app.services.moderation import ModerationPolicy, ModerationService
from videochat.app.services.presence import (
    NotInRoomError,
    get_open_membership,
    get_room,
    list_present,
    was_expelled,
)
from videochat.app.services.users import UserNotFoundError

logger = get_logger(__name__)


class MembershipRequiredError(ForbiddenError):
    def __init__(self):
        super().__init__("An active membership is required")


class AccountInactiveError(ForbiddenError):
    def __init__(self, status: str):
        super().__init__(f"Account is {status}")


class RoomClosedError(ConflictError):
    def __init__(self, room_id: int):
        super().__init__(f"Room {room_id} is closed")


class RoomFullError(ConflictError):
    def __init__(self, room_id: int):
        super().__init__(f"Room {room_id} is full")


class AlreadyInRoomError(ConflictError):
    def __init__(self):
        super().__init__("You are already in this room")


class ExpelledFromRoomError(ForbiddenError):
    def __init__(self, room_id: int):
        super().__init__(f"You were expelled from room {room_id}")


class NotRoomCreatorError(ForbiddenError):
    def __init__(self):
        super().__init__("Only the room creator can close it")


class RoomService:
    """Service class for rooms. Caller must commit the session."""

    def __init__(self, session: AsyncSession, moderation: Optional[ModerationPolicy] = None):
        self.session = session
        self.moderation = ModerationService(session, moderation)

    async def _get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)
        return user

    async def create_room(
        self,
        creator_id: int,
        name: str,
        topic: str,
        description: Optional[str] = None,
        max_participants: int = MAX_ROOM_PARTICIPANTS,
        requires_membership: bool = True,
    ) -> Room:
        """Create a room. The creator is not joined automatically."""
        creator = await self._get_user(creator_id)
        now = utcnow()
        if creator.status != "active":
            raise AccountInactiveError(creator.status)
        if not creator.has_active_membership(now):
            raise MembershipRequiredError()
        if not name or not name.strip():
            raise ValidationError("Room name is required")
        if not topic or not topic.strip():
            raise ValidationError("Room topic is required")
        if not MIN_ROOM_PARTICIPANTS <= max_participants <= MAX_ROOM_PARTICIPANTS:
            raise ValidationError(
                f"max_participants must be between {MIN_ROOM_PARTICIPANTS} and {MAX_ROOM_PARTICIPANTS}"
            )

        room = Room(
            name=name.strip(),
            topic=topic.strip(),
            description=description,
            creator_id=creator_id,
            max_participants=max_participants,
            requires_membership=requires_membership,
            is_active=True,
            current_participants=0,
            total_votings=0,
            total_expulsions=0,
            last_activity=now,
            created_at=now,
        )
        self.session.add(room)
        await self.session.flush()
        logger.info("Room created", room_id=room.id, creator_id=creator_id)
        return room

    async def list_rooms(self, topic: Optional[str] = None) -> List[Room]:
        query = select(Room).where(Room.is_active.is_(True))
        if topic:
            query = query.where(Room.topic == topic)
        result = await self.session.execute(query.order_by(Room.last_activity.desc(), Room.id.desc()))
        return list(result.scalars().all())

    async def join_room(self, room_id: int, user_id: int) -> RoomMember:
        """
        Raises:
            RoomNotFoundError, RoomClosedError, AccountInactiveError,
            MembershipRequiredError, ExpelledFromRoomError,
            AlreadyInRoomError, RoomFullError
        """
        room = await get_room(self.session, room_id, for_update=True)
        if not room.is_active:
            raise RoomClosedError(room_id)

        user = await self._get_user(user_id)
        now = utcnow()
        if user.status != "active":
            raise AccountInactiveError(user.status)
        if room.requires_membership and not user.has_active_membership(now):
            raise MembershipRequiredError()
        if await was_expelled(self.session, room_id, user_id):
            raise ExpelledFromRoomError(room_id)
        if await get_open_membership(self.session, room_id, user_id):
            raise AlreadyInRoomError()
        if room.current_participants >= room.max_participants:
            raise RoomFullError(room_id)

        member = RoomMember(room_id=room_id, user_id=user_id, joined_at=now)
        self.session.add(member)
        try:
            await self.session.flush()
        except IntegrityError:
            raise AlreadyInRoomError()

        room.current_participants = (room.current_participants or 0) + 1
        room.last_activity = now
        await self.session.flush()
        logger.info("User joined room", room_id=room_id, user_id=user_id, participants=room.current_participants)
        return member

    async def leave_room(self, room_id: int, user_id: int) -> RoomMember:
        """
        Close the user's presence. Open votings against the leaver are
        failed; no expulsion is recorded for them.
        """
        room = await get_room(self.session, room_id, for_update=True)
        member = await get_open_membership(self.session, room_id, user_id)
        if not member:
            raise NotInRoomError(room_id)

        now = utcnow()
        member.left_at = now
        room.current_participants = max((room.current_participants or 0) - 1, 0)
        room.last_activity = now
        await self.session.flush()

        await self.moderation.cancel_open_votings(
            room_id,
            details=f"Voting cancelled: user {user_id} left the room",
            target_id=user_id,
        )
        logger.info("User left room", room_id=room_id, user_id=user_id)
        return member

    async def close_room(self, room_id: int, user_id: int) -> Room:
        """Creator only. Ends every presence and fails every open voting."""
        room = await get_room(self.session, room_id, for_update=True)
        if room.creator_id != user_id:
            raise NotRoomCreatorError()
        if not room.is_active:
            raise RoomClosedError(room_id)

        now = utcnow()
        await self.session.execute(
            update(RoomMember)
            .where(RoomMember.room_id == room_id, RoomMember.left_at.is_(None))
            .values(left_at=now)
            .execution_options(synchronize_session="fetch")
        )
        room.is_active = False
        room.current_participants = 0
        room.last_activity = now
        await self.session.flush()

        await self.moderation.cancel_open_votings(
            room_id,
            details=f"Voting cancelled: room {room_id} closed",
            actor_id=user_id,
        )
        logger.info("Room closed", room_id=room_id, user_id=user_id)
        return room

    async def list_current_members(self, room_id: int) -> List[Dict[str, Any]]:
        await get_room(self.session, room_id)
        members = await list_present(self.session, room_id)
        if not members:
            return []
        users = await self.session.execute(select(User).where(User.id.in_([m.user_id for m in members])))
        by_id = {u.id: u for u in users.scalars().all()}
        return [
            {
                "user_id": m.user_id,
                "username": by_id[m.user_id].username,
                "full_name": by_id[m.user_id].full_name,
                "joined_at": m.joined_at,
            }
            for m in members
        ]
