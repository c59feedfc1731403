import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# Import all models to ensure they're registered with SQLAlchemy Base
from . import models, models_integrations  # noqa: F401
from .config import FRONTEND_URL, RATE_LIMIT_USE_REDIS, SYNC_BACKEND
from .database import Base, SessionLocal, engine
from .domain.scheduling.commands import CommandDispatcher, build_command_table
from .domain.scheduling.errors import BookingError, RateLimitExceededError
from .domain.scheduling.router import router as scheduling_router
from .integrations.sync_coordinator import SyncCoordinator
from .rate_limiter import RateLimiter, get_redis_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_rate_limiter() -> RateLimiter:
    redis_client = None
    if RATE_LIMIT_USE_REDIS:
        try:
            redis_client = get_redis_client()
        except Exception as e:
            logger.warning(f"Redis connection failed - rate limiting will use memory only: {e}")
    return RateLimiter(redis_client=redis_client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        # Ignore "already exists" errors from race conditions between workers
        if "already exists" in str(e):
            logger.info("Database tables already exist (created by another worker)")
        else:
            raise

    rate_limiter = build_rate_limiter()
    rate_limiter.start()

    dispatcher = None
    if SYNC_BACKEND == "arq":
        from .worker import ArqSyncDispatcher

        dispatcher = await ArqSyncDispatcher.create()
        logger.info("Sync jobs will be queued to ARQ")

    sync_coordinator = SyncCoordinator(dispatcher=dispatcher)

    app.state.rate_limiter = rate_limiter
    app.state.sync_coordinator = sync_coordinator
    app.state.command_dispatcher = CommandDispatcher(
        build_command_table(), rate_limiter, SessionLocal, sync_coordinator
    )

    yield

    logger.info("Application shutting down...")
    await rate_limiter.stop()
    await sync_coordinator.aclose()
    if dispatcher is not None:
        await dispatcher.close()


app = FastAPI(title="Salon Booking Engine", version="1.0.0", lifespan=lifespan)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={
            "errorCode": "VALIDATION_ERROR",
            "message": "Invalid request",
            "suggestion": None,
            "details": {"errors": jsonable_errors(exc)},
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"❌ Database error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"errorCode": "INTERNAL_ERROR", "message": "Internal server error", "suggestion": None},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(error.get("loc", ())), "msg": error.get("msg")} for error in exc.errors()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scheduling_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/redis")
async def health_redis(request: Request):
    rate_limiter = getattr(request.app.state, "rate_limiter", None)
    client = rate_limiter.redis_client if rate_limiter else None
    if client is None:
        return {"status": "disabled"}
    try:
        client.ping()
        return {"status": "ok"}
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": str(e)})
