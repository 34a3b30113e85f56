from typing import Annotated, Mapping

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.core.security import decode_access_token
from app.db.session import get_session
from app.models.push_token import DeviceClass
from app.models.user import User
from app.services.push_notifications import NotificationDispatcher
from app.services.push_providers import PushAdapter

SessionDep = Annotated[AsyncSession, Depends(get_session)]

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: SessionDep,
) -> User:
    """Resolve the already-issued bearer token to a user; issuing tokens happens elsewhere."""
    try:
        payload = decode_access_token(token)
    except JWTError as exc:  # pragma: no cover - FastAPI handles formatting
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Could not validate credentials") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token payload")

    statement = select(User).where(User.id == int(subject))
    result = await session.exec(statement)
    user = result.one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def get_current_active_user(
    current_user: Annotated[User, Depends(get_current_user)]
) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    return current_user


CurrentUser = Annotated[User, Depends(get_current_active_user)]


def get_push_dispatcher(request: Request) -> NotificationDispatcher:
    dispatcher = getattr(request.app.state, "push_dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Push delivery is not available")
    return dispatcher


def get_push_adapters(
    dispatcher: Annotated[NotificationDispatcher, Depends(get_push_dispatcher)],
) -> Mapping[DeviceClass, PushAdapter]:
    return dispatcher.adapters


DispatcherDep = Annotated[NotificationDispatcher, Depends(get_push_dispatcher)]
AdaptersDep = Annotated[Mapping[DeviceClass, PushAdapter], Depends(get_push_adapters)]
