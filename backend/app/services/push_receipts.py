import logging
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.push_token import DeviceClass
from app.schemas.push import ReceiptRead, ReceiptStatusResult
from app.services import user_notifications
from app.services.push_providers import PushAdapter, PushErrorCode, chunked

logger = logging.getLogger(__name__)


async def check_notification_status(
    session: AsyncSession,
    adapters: Mapping[DeviceClass, PushAdapter],
    notification_id: int,
) -> ReceiptStatusResult:
    """Look up delivery receipts for the tickets stored on a notification.

    Ticket ids are queried in provider sized chunks. A chunk whose lookup
    fails is logged and left out of the result.
    """
    try:
        notification = await user_notifications.get_notification(
            session, notification_id=notification_id
        )
    except SQLAlchemyError:
        logger.exception(f"Error loading notification {notification_id}")
        await session.rollback()
        return ReceiptStatusResult(success=False, error=PushErrorCode.NOT_FOUND)

    if notification is None or notification.ticket_ids is None:
        return ReceiptStatusResult(success=False, error=PushErrorCode.NOT_FOUND)

    adapter = adapters[DeviceClass(notification.device_class or DeviceClass.managed)]
    receipts: list[ReceiptRead] = []
    for chunk in chunked(notification.ticket_ids, adapter.receipt_chunk_size):
        try:
            chunk_receipts = await adapter.get_receipts(chunk)
        except Exception:
            logger.exception(
                f"Error getting push notification receipts for notification {notification_id}"
            )
            continue
        receipts.extend(
            ReceiptRead(
                ticket_id=receipt.ticket_id,
                status=receipt.status,
                message=receipt.message,
                details=receipt.details,
            )
            for receipt in chunk_receipts
        )

    return ReceiptStatusResult(success=True, receipts=receipts)
