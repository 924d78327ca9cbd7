from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.api.deps import get_current_user_id, get_moderation_policy, get_session, handle_service_error
from videochat.app.core.exceptions import ServiceError
from videochat.app.core.logging import get_logger
from videochat.app.schemas import (
    ActiveVotingResponse,
    CastVoteResponse,
    ExpulsionResponse,
    ModerationLogResponse,
    VoteCreate,
    VotingCreate,
    VotingResponse,
)
from videochat.app.services.moderation import ModerationPolicy, ModerationService

router = APIRouter()
logger = get_logger(__name__)


def get_moderation_service(
    session: AsyncSession = Depends(get_session),
    policy: ModerationPolicy = Depends(get_moderation_policy),
) -> ModerationService:
    return ModerationService(session, policy)


@router.post("/rooms/{room_id}/votings", response_model=VotingResponse, status_code=201)
async def start_voting(
    room_id: int,
    data: VotingCreate,
    user_id: int = Depends(get_current_user_id),
    service: ModerationService = Depends(get_moderation_service),
):
    try:
        voting = await service.start_voting(room_id, user_id, data.target_id, data.reason)
        await service.session.commit()
        return voting
    except ServiceError as e:
        await service.session.rollback()
        logger.info("Voting rejected", room_id=room_id, initiator_id=user_id, error=e.message)
        handle_service_error(e)


@router.get("/rooms/{room_id}/votings", response_model=List[ActiveVotingResponse])
async def active_votings(
    room_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ModerationService = Depends(get_moderation_service),
):
    try:
        return await service.get_active_votings(room_id, user_id)
    except ServiceError as e:
        handle_service_error(e)


@router.post("/votings/{voting_id}/votes", response_model=CastVoteResponse)
async def cast_vote(
    voting_id: int,
    data: VoteCreate,
    user_id: int = Depends(get_current_user_id),
    service: ModerationService = Depends(get_moderation_service),
):
    """
    Vote for the expulsion. `resolved` is true when this vote completed the
    quorum; the target has then been removed from the room.
    """
    try:
        result = await service.cast_vote(voting_id, user_id, data.reason)
        await service.session.commit()
    except ServiceError as e:
        await service.session.rollback()
        handle_service_error(e)

    return {
        "voting_id": voting_id,
        "current_votes": result.current_votes,
        "required_votes": result.required_votes,
        "resolved": result.resolved,
        "expulsion": result.expulsion,
    }


@router.get("/rooms/{room_id}/logs", response_model=List[ModerationLogResponse])
async def room_logs(
    room_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _viewer: int = Depends(get_current_user_id),
    service: ModerationService = Depends(get_moderation_service),
):
    try:
        return await service.get_room_logs(room_id, limit, offset)
    except ServiceError as e:
        handle_service_error(e)


@router.get("/expulsions", response_model=List[ExpulsionResponse])
async def my_expulsions(
    user_id: int = Depends(get_current_user_id),
    service: ModerationService = Depends(get_moderation_service),
):
    return await service.get_user_expulsions(user_id)
