import logging
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.notification import NotificationCategory
from app.schemas.push import BulkSendResult, RecipientResult
from app.services import followers as followers_service
from app.services.push_notifications import NotificationDispatcher
from app.services.push_providers import PushErrorCode, PushMessage

logger = logging.getLogger(__name__)


async def send_bulk(
    session: AsyncSession,
    dispatcher: NotificationDispatcher,
    user_ids: Sequence[int],
    message: PushMessage,
) -> BulkSendResult:
    """Dispatch ``message`` to every id in turn.

    One result per input id, in input order. A recipient's failure, even an
    unexpected exception, never stops the rest of the batch.
    """
    results: list[RecipientResult] = []
    for user_id in user_ids:
        try:
            outcome = await dispatcher.send(session, user_id, message)
        except Exception as exc:
            logger.exception(f"Unexpected error sending notification to user {user_id}")
            await session.rollback()
            results.append(
                RecipientResult(
                    user_id=user_id,
                    success=False,
                    error=PushErrorCode.PROVIDER_ERROR,
                    detail=str(exc),
                )
            )
            continue
        results.append(RecipientResult(user_id=user_id, **outcome.model_dump()))

    bulk = BulkSendResult(success=True, results=results)
    logger.info(
        f"Bulk {message.category.value} notification delivered to "
        f"{bulk.delivered_count}/{len(user_ids)} recipient(s)"
    )
    return bulk


async def send_to_followers(
    session: AsyncSession,
    dispatcher: NotificationDispatcher,
    followed_user_id: int,
    message: PushMessage,
) -> BulkSendResult:
    """Fan ``message`` out to everyone following ``followed_user_id``."""
    try:
        follower_ids = await followers_service.list_follower_ids(session, user_id=followed_user_id)
    except SQLAlchemyError:
        logger.exception(f"Error fetching followers of user {followed_user_id}")
        await session.rollback()
        return BulkSendResult(success=False, error=PushErrorCode.FOLLOWERS_LOOKUP_FAILED)

    if not follower_ids:
        logger.debug(f"User {followed_user_id} has no followers to notify")
        return BulkSendResult(success=False, error=PushErrorCode.NO_FOLLOWERS)

    return await send_bulk(session, dispatcher, follower_ids, message)


def follower_update_message(
    followed_user_id: int,
    *,
    title: str,
    body: str,
    data: dict | None = None,
) -> PushMessage:
    return PushMessage(
        category=NotificationCategory.following,
        title=title,
        body=body,
        data={**(data or {}), "followed_user_id": followed_user_id},
    )
