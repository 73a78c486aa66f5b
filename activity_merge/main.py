import asyncio
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request
from loguru import logger

from activity_merge.api.activities import router as activities_router
from activity_merge.api.link import router as link_router
from activity_merge.api.merge import router as merge_router
from activity_merge.config.settings import settings
from activity_merge.core.logger import setup_logger
from activity_merge.db.models import Base
from activity_merge.db.session import check_database_connection, get_engine
from activity_merge.merge.jobs import merge_scan_tick

setup_logger(level=settings.log_level, log_file=settings.log_file)


def _start_scheduler() -> BackgroundScheduler | None:
    if not settings.merge_scan_scheduler_enabled:
        logger.info("[SCHEDULER] Merge scan scheduler disabled (MERGE_SCAN_SCHEDULER_ENABLED=false)")
        return None

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        merge_scan_tick,
        trigger=IntervalTrigger(minutes=settings.merge_scan_interval_minutes),
        id="merge_scan",
        name="Duplicate Activity Scan",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(
        f"[SCHEDULER] Started merge scan scheduler (runs every {settings.merge_scan_interval_minutes} minutes)"
    )
    return scheduler


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Manage application lifespan - verify the database and start the scan scheduler.

    Note: FastAPI requires async for lifespan context manager,
    even if no await operations are used.
    """
    check_database_connection()
    logger.info("Ensuring database tables exist")
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables verified")

    scheduler = _start_scheduler()

    await asyncio.sleep(0)
    yield

    if scheduler is not None:
        scheduler.shutdown()
        logger.info("[SCHEDULER] Stopped merge scan scheduler")


app = FastAPI(title="Activity Merge", lifespan=lifespan)

app.include_router(merge_router)
app.include_router(link_router)
app.include_router(activities_router)

logger.info("FastAPI application initialized")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.debug(f"Request: {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
    return response
