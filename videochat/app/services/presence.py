# videochat/app/services/presence.py
"""
Room presence lookups shared by the room and moderation services.
"""

from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.exceptions import ForbiddenError, NotFoundError
from videochat.app.models.moderation import Expulsion
from videochat.app.models.room import Room, RoomMember


class RoomNotFoundError(NotFoundError):
    def __init__(self, room_id: int):
        super().__init__(f"Room {room_id} not found")


class NotInRoomError(ForbiddenError):
    def __init__(self, room_id: int):
        super().__init__(f"You are not a participant of room {room_id}")


async def get_room(session: AsyncSession, room_id: int, for_update: bool = False) -> Room:
    query = select(Room).where(Room.id == room_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    room = (await session.execute(query)).scalar_one_or_none()
    if not room:
        raise RoomNotFoundError(room_id)
    return room


async def get_open_membership(session: AsyncSession, room_id: int, user_id: int) -> Optional[RoomMember]:
    result = await session.execute(
        select(RoomMember).where(
            RoomMember.room_id == room_id,
            RoomMember.user_id == user_id,
            RoomMember.left_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def count_present(session: AsyncSession, room_id: int) -> int:
    result = await session.execute(
        select(func.count(RoomMember.id)).where(
            RoomMember.room_id == room_id,
            RoomMember.left_at.is_(None),
        )
    )
    return result.scalar_one()


async def list_present(session: AsyncSession, room_id: int) -> List[RoomMember]:
    result = await session.execute(
        select(RoomMember)
        .where(RoomMember.room_id == room_id, RoomMember.left_at.is_(None))
        .order_by(RoomMember.joined_at, RoomMember.id)
    )
    return list(result.scalars().all())


async def was_expelled(session: AsyncSession, room_id: int, user_id: int) -> bool:
    result = await session.execute(
        select(Expulsion.id).where(Expulsion.room_id == room_id, Expulsion.user_id == user_id).limit(1)
    )
    return result.first() is not None
