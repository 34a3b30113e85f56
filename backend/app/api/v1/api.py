from fastapi import APIRouter

from app.api.v1.endpoints import notifications, push, version

api_router = APIRouter()
api_router.include_router(version.router, tags=["version"])
api_router.include_router(push.router, prefix="/push", tags=["push"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
