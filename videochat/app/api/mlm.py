from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.api.deps import get_current_user_id, get_session, handle_service_error
from videochat.app.core.clock import as_naive_utc
from videochat.app.core.exceptions import ServiceError
from videochat.app.core.settings import get_settings
from videochat.app.services.mlm_reports import MLMReportService

router = APIRouter()


def get_report_service(session: AsyncSession = Depends(get_session)) -> MLMReportService:
    return MLMReportService(session, depth=get_settings().MLM_NETWORK_DEPTH)


@router.get("/network")
async def get_network(
    depth: Optional[int] = Query(None, ge=1),
    user_id: int = Depends(get_current_user_id),
    service: MLMReportService = Depends(get_report_service),
):
    try:
        tree = await service.get_network_tree(user_id, depth)
    except ServiceError as e:
        handle_service_error(e)
    return {"network": tree}


@router.get("/stats")
async def get_stats(
    user_id: int = Depends(get_current_user_id),
    service: MLMReportService = Depends(get_report_service),
):
    try:
        return await service.get_stats(user_id)
    except ServiceError as e:
        handle_service_error(e)


@router.get("/levels/{level}")
async def get_level(
    level: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    service: MLMReportService = Depends(get_report_service),
):
    try:
        users, total = await service.get_users_at_level(user_id, level, page, limit)
    except ServiceError as e:
        handle_service_error(e)
    return {"level": level, "users": users, "total": total, "page": page, "limit": limit}


@router.get("/commissions")
async def get_commissions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    service: MLMReportService = Depends(get_report_service),
):
    try:
        items, total = await service.get_commission_history(user_id, page, limit)
    except ServiceError as e:
        handle_service_error(e)
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/earnings-report")
async def get_earnings_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: int = Depends(get_current_user_id),
    service: MLMReportService = Depends(get_report_service),
):
    try:
        return await service.get_earnings_report(user_id, as_naive_utc(start_date), as_naive_utc(end_date))
    except ServiceError as e:
        handle_service_error(e)


@router.get("/referral")
async def get_referral(
    user_id: int = Depends(get_current_user_id),
    service: MLMReportService = Depends(get_report_service),
):
    try:
        return await service.get_referral_info(user_id)
    except ServiceError as e:
        handle_service_error(e)
