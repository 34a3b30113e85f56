import asyncio
import logging
from contextlib import suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.rate_limit import limiter
from app.db.session import init_models
from app.services import push_scheduler
from app.services.push_notifications import NotificationDispatcher
from app.services.push_providers import build_push_adapters, close_push_adapters

logging.getLogger("app").setLevel(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url=f"{settings.API_V1_STR}/docs",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    redoc_url=None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update with frontend URL(s) in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.on_event("startup")
async def on_startup() -> None:
    await init_models()
    dispatcher = NotificationDispatcher(build_push_adapters(settings))
    app.state.push_dispatcher = dispatcher
    if settings.SCHEDULER_ENABLED:
        app.state.notification_tasks = push_scheduler.start_background_tasks(dispatcher)
    else:
        logger.info("Notification scheduler disabled")
        app.state.notification_tasks = []


@app.on_event("shutdown")
async def on_shutdown() -> None:
    tasks = getattr(app.state, "notification_tasks", [])
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task
    dispatcher = getattr(app.state, "push_dispatcher", None)
    if dispatcher is not None:
        await close_push_adapters(dispatcher.adapters)
