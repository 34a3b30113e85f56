from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, not_
from sqlmodel import delete, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.db.query import dialect_insert
from app.models.push_token import DeviceClass, PushToken


async def register_push_token(
    session: AsyncSession,
    *,
    user_id: int,
    push_token: str,
    device_class: DeviceClass,
) -> PushToken:
    """Register or refresh the token a user's device class is reached through.

    Upserts on (user_id, device_class) so rotation replaces the old token.
    A token value previously registered to another row moves to this one.
    Token syntax is not checked here; adapters validate per device class.
    """
    now = datetime.now(timezone.utc)
    await session.exec(
        delete(PushToken).where(
            PushToken.push_token == push_token,
            not_(and_(PushToken.user_id == user_id, PushToken.device_class == device_class.value)),
        )
    )
    stmt = dialect_insert(session, PushToken).values(
        user_id=user_id,
        push_token=push_token,
        device_class=device_class.value,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "device_class"],
        set_=dict(push_token=push_token, updated_at=now),
    )
    await session.exec(stmt)
    await session.commit()

    result = await session.exec(
        select(PushToken)
        .where(PushToken.user_id == user_id, PushToken.device_class == device_class.value)
        .execution_options(populate_existing=True)
    )
    return result.one()


async def get_push_token(
    session: AsyncSession,
    *,
    user_id: int,
) -> Optional[PushToken]:
    """Return the user's most recently refreshed token, if any."""
    stmt = (
        select(PushToken)
        .where(PushToken.user_id == user_id)
        .order_by(PushToken.updated_at.desc(), PushToken.id.desc())
        .limit(1)
    )
    result = await session.exec(stmt)
    return result.first()


async def delete_push_token(
    session: AsyncSession,
    *,
    user_id: int,
    push_token: str,
) -> bool:
    """Remove a push token (on unregister or provider-reported invalidity).

    Idempotent: returns False when the row is already gone.
    """
    stmt = delete(PushToken).where(
        PushToken.user_id == user_id,
        PushToken.push_token == push_token,
    )
    result = await session.exec(stmt)
    await session.commit()
    return result.rowcount > 0  # type: ignore


async def update_last_used(
    session: AsyncSession,
    *,
    push_token: str,
) -> None:
    """Track successful delivery by updating last_used_at timestamp."""
    stmt = select(PushToken).where(PushToken.push_token == push_token)
    result = await session.exec(stmt)
    token = result.one_or_none()

    if token:
        token.last_used_at = datetime.now(timezone.utc)
        session.add(token)
        await session.commit()
