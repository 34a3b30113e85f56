from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.follower import Follower


async def list_follower_ids(session: AsyncSession, *, user_id: int) -> list[int]:
    stmt = (
        select(Follower.follower_id)
        .where(Follower.following_id == user_id)
        .order_by(Follower.created_at, Follower.id)
    )
    result = await session.exec(stmt)
    return list(result.all())
