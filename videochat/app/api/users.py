from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.api.deps import get_current_user_id, get_session, handle_service_error
from videochat.app.core.exceptions import ServiceError
from videochat.app.core.logging import get_logger
from videochat.app.schemas import UserCreate, UserResponse
from videochat.app.services.users import UserService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/register", response_model=UserResponse, status_code=201)
async def register_user(data: UserCreate, session: AsyncSession = Depends(get_session)):
    service = UserService(session)
    try:
        user = await service.register_user(
            username=data.username,
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            sponsor_code=data.sponsor_code,
        )
        await session.commit()
        return await service.get_user_info(user.id)
    except ServiceError as e:
        await session.rollback()
        logger.warning("Registration failed", username=data.username, error=e.message)
        handle_service_error(e)


@router.get("/me", response_model=UserResponse)
async def get_me(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await UserService(session).get_user_info(user_id)
    except ServiceError as e:
        handle_service_error(e)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    _viewer: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await UserService(session).get_user_info(user_id)
    except ServiceError as e:
        handle_service_error(e)
