from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.api.deps import get_current_user_id, get_moderation_policy, get_session, handle_service_error
from videochat.app.core.exceptions import ServiceError
from videochat.app.core.logging import get_logger
from videochat.app.schemas import PresentMember, RoomCreate, RoomMemberResponse, RoomResponse
from videochat.app.services.moderation import ModerationPolicy
from videochat.app.services.presence import get_room
from videochat.app.services.rooms import RoomService

router = APIRouter()
logger = get_logger(__name__)


def get_room_service(
    session: AsyncSession = Depends(get_session),
    policy: ModerationPolicy = Depends(get_moderation_policy),
) -> RoomService:
    return RoomService(session, policy)


@router.post("", response_model=RoomResponse, status_code=201)
async def create_room(
    data: RoomCreate,
    user_id: int = Depends(get_current_user_id),
    service: RoomService = Depends(get_room_service),
):
    try:
        room = await service.create_room(
            creator_id=user_id,
            name=data.name,
            topic=data.topic,
            description=data.description,
            max_participants=data.max_participants,
            requires_membership=data.requires_membership,
        )
        await service.session.commit()
        return room
    except ServiceError as e:
        await service.session.rollback()
        handle_service_error(e)


@router.get("", response_model=List[RoomResponse])
async def list_rooms(
    topic: Optional[str] = None,
    _viewer: int = Depends(get_current_user_id),
    service: RoomService = Depends(get_room_service),
):
    return await service.list_rooms(topic)


@router.get("/{room_id}", response_model=RoomResponse)
async def get_room_details(
    room_id: int,
    _viewer: int = Depends(get_current_user_id),
    service: RoomService = Depends(get_room_service),
):
    try:
        return await get_room(service.session, room_id)
    except ServiceError as e:
        handle_service_error(e)


@router.get("/{room_id}/members", response_model=List[PresentMember])
async def list_members(
    room_id: int,
    _viewer: int = Depends(get_current_user_id),
    service: RoomService = Depends(get_room_service),
):
    try:
        return await service.list_current_members(room_id)
    except ServiceError as e:
        handle_service_error(e)


@router.post("/{room_id}/join", response_model=RoomMemberResponse)
async def join_room(
    room_id: int,
    user_id: int = Depends(get_current_user_id),
    service: RoomService = Depends(get_room_service),
):
    try:
        member = await service.join_room(room_id, user_id)
        await service.session.commit()
        return member
    except ServiceError as e:
        await service.session.rollback()
        logger.info("Join rejected", room_id=room_id, user_id=user_id, error=e.message)
        handle_service_error(e)


@router.post("/{room_id}/leave", response_model=RoomMemberResponse)
async def leave_room(
    room_id: int,
    user_id: int = Depends(get_current_user_id),
    service: RoomService = Depends(get_room_service),
):
    try:
        member = await service.leave_room(room_id, user_id)
        await service.session.commit()
        return member
    except ServiceError as e:
        await service.session.rollback()
        handle_service_error(e)


@router.post("/{room_id}/close", response_model=RoomResponse)
async def close_room(
    room_id: int,
    user_id: int = Depends(get_current_user_id),
    service: RoomService = Depends(get_room_service),
):
    try:
        room = await service.close_room(room_id, user_id)
        await service.session.commit()
        return room
    except ServiceError as e:
        await service.session.rollback()
        handle_service_error(e)
