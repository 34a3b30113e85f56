from fastapi import APIRouter

from app.api.deps import CurrentUser, SessionDep
from app.schemas.push import (
    PushTokenRegisterRequest,
    PushTokenUnregisterRequest,
    PushTokenResponse,
)
from app.services import push_tokens

router = APIRouter()


@router.post("/token", response_model=PushTokenResponse)
async def register_push_token(
    session: SessionDep,
    current_user: CurrentUser,
    request: PushTokenRegisterRequest,
) -> PushTokenResponse:
    """Register a push notification token for the current user.

    Replaces any token the user already had for the same device class.
    """
    await push_tokens.register_push_token(
        session=session,
        user_id=current_user.id,
        push_token=request.push_token,
        device_class=request.device_class,
    )
    return PushTokenResponse(status="registered")


@router.delete("/token", response_model=PushTokenResponse)
async def unregister_push_token(
    session: SessionDep,
    current_user: CurrentUser,
    request: PushTokenUnregisterRequest,
) -> PushTokenResponse:
    """Unregister a push notification token.

    Unknown tokens are ignored so clients can retry safely.
    """
    await push_tokens.delete_push_token(
        session,
        user_id=current_user.id,
        push_token=request.push_token,
    )
    return PushTokenResponse(status="unregistered")
