"""
FastAPI application with New Relic APM, CORS, lifespan, error mapping and all routers.
"""
import logging
import os

# New Relic must be initialized BEFORE any other imports that it instruments.
if os.getenv("NEW_RELIC_LICENSE_KEY"):
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from luba.config import get_settings
from luba.database import AsyncSessionLocal
from luba.errors import LubaError, PartialWriteDivergence, ValidationError
from luba.redis_client import get_redis, close_redis
from luba.routers import auth, drivers, feedback, payments, rides
from luba.services.scheduler import RolloverScheduler

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    await get_redis()          # warm up connection pool
    scheduler = RolloverScheduler(AsyncSessionLocal)
    scheduler.start()
    yield
    await scheduler.stop()
    await close_redis()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Luba Delivery: ride requests, driver dispatch and shift earnings",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LubaError)
async def luba_error_handler(request: Request, exc: LubaError):
    logger.warning(
        "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message
    )
    content = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.fields:
        content["fields"] = exc.fields
    if isinstance(exc, PartialWriteDivergence):
        content["request_id"] = exc.request_id
    return JSONResponse(status_code=exc.status_code, content=content)


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check (no auth)
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Register routers
app.include_router(auth.router)
app.include_router(rides.router)
app.include_router(rides.places_router)
app.include_router(drivers.router)
app.include_router(payments.router)
app.include_router(feedback.router)
