import asyncio
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.api import admin, mlm, moderation, payments, rooms, users
from videochat.app.api.deps import get_session
from videochat.app.core.database import async_session, engine
from videochat.app.core.logging import setup_logging, get_logger
from videochat.app.core.settings import get_settings
from videochat.app.core.metrics import PrometheusMiddleware, get_metrics_response
from videochat.app.services.moderation import ModerationPolicy, ModerationService

APP_VERSION = "1.0.0"

try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.is_production)
logger = get_logger(__name__)
logger.info(
    "Configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    voting_duration_minutes=settings.VOTING_DURATION_MINUTES,
    mlm_max_levels=settings.MLM_MAX_LEVELS,
)


async def run_voting_sweep() -> int:
    """Fail every voting whose window has elapsed; one transaction per pass."""
    async with async_session() as session:
        service = ModerationService(session, ModerationPolicy.from_settings(settings))
        try:
            expired = await service.expire_stale_votings()
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return expired


async def sweep_forever(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_voting_sweep()
        except Exception as e:
            # A failed pass is retried on the next tick
            logger.error("Voting sweep failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting", version=APP_VERSION, sweep_interval=settings.VOTING_SWEEP_INTERVAL_SECONDS)
    sweeper = asyncio.create_task(sweep_forever(settings.VOTING_SWEEP_INTERVAL_SECONDS))
    try:
        yield
    finally:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
        await engine.dispose()
        logger.info("Stopped")


def cors_origins() -> list[str]:
    origins = settings.allowed_origins_list
    if origins:
        return origins
    # get_settings already refused an empty list in production
    logger.warning("CORS open to all origins; set ALLOWED_ORIGINS outside development")
    return ["*"]


app = FastAPI(title="VideoChat Backend", version=APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)
# Added last so it wraps CORS and sees every response
app.add_middleware(PrometheusMiddleware)

for module, prefix in (
    (users, "/users"),
    (payments, "/payments"),
    (mlm, "/mlm"),
    (rooms, "/rooms"),
    (moderation, "/moderation"),
    (admin, "/admin"),
):
    app.include_router(module.router, prefix=prefix, tags=[prefix.strip("/")])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    checks = {"database": "ok"}
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        checks["database"] = f"error: {e}"
    status = "healthy" if checks["database"] == "ok" else "unhealthy"
    return {"status": status, "version": APP_VERSION, "checks": checks}


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    return get_metrics_response(openmetrics=openmetrics)
