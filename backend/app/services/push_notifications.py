import logging
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.push_token import DeviceClass
from app.schemas.push import PushSendResult
from app.services import notification_preferences, push_tokens, user_notifications
from app.services.push_providers import (
    PERMANENT_TOKEN_ERRORS,
    PushAdapter,
    PushErrorCode,
    PushMessage,
    mask_token,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Routes a notification for one user to the adapter serving their device.

    Built once at startup with the adapters keyed by device class; the
    session is supplied per call so HTTP requests and scheduler ticks each
    use their own.
    """

    def __init__(self, adapters: Mapping[DeviceClass, PushAdapter]) -> None:
        self.adapters = dict(adapters)

    def adapter_for(self, device_class: DeviceClass | str) -> PushAdapter:
        return self.adapters[DeviceClass(device_class)]

    async def send(
        self,
        session: AsyncSession,
        user_id: int,
        message: PushMessage,
    ) -> PushSendResult:
        """Send ``message`` to ``user_id``'s registered device.

        Args:
            session: Database session
            user_id: Recipient
            message: Category, title, body and data payload

        Returns:
            A PushSendResult; failures are reported in ``error``, never raised.

        Side effects:
            - tokens the provider reports as unregistered or malformed are deleted
            - a Notification row is stored once the provider accepts the message
            - provider ticket ids are attached to that row for receipt checks
        """
        try:
            token = await push_tokens.get_push_token(session, user_id=user_id)
        except SQLAlchemyError:
            logger.exception(f"Failed to load push token for user {user_id}")
            await session.rollback()
            return PushSendResult.failure(PushErrorCode.TOKEN_NOT_FOUND, "Push token lookup failed")
        if token is None:
            logger.debug(f"No push token found for user {user_id}")
            return PushSendResult.failure(PushErrorCode.TOKEN_NOT_FOUND, "Push token not found")

        try:
            preferences = await notification_preferences.get_preferences(session, user_id=user_id)
        except SQLAlchemyError:
            logger.exception(f"Failed to load notification preferences for user {user_id}")
            await session.rollback()
            return PushSendResult.failure(
                PushErrorCode.PREFERENCES_NOT_FOUND, "Notification preferences not found"
            )

        adapter = self.adapter_for(token.device_class)

        if not preferences.enabled:
            return PushSendResult.failure(
                PushErrorCode.NOTIFICATIONS_DISABLED, "Notifications are disabled for this user"
            )
        if not preferences.category_flag(message.category):
            return PushSendResult.failure(
                PushErrorCode.CATEGORY_DISABLED, f"{message.category.value} notifications are disabled"
            )

        token_value = token.push_token
        device_class = DeviceClass(token.device_class)
        delivery = await adapter.send(token_value, message)

        if not delivery.success:
            error_code = delivery.error_code or PushErrorCode.PROVIDER_ERROR
            if error_code in PERMANENT_TOKEN_ERRORS:
                logger.info(f"Deleting invalid push token: {mask_token(token_value)}")
                await self._discard_token(session, user_id=user_id, token_value=token_value)
            return PushSendResult.failure(error_code, delivery.error)

        ticket_ids = [delivery.ticket_id] if delivery.ticket_id else []

        try:
            notification = await user_notifications.create_notification(
                session,
                user_id=user_id,
                category=message.category,
                title=message.title,
                body=message.body,
                data=message.data,
                device_class=device_class.value,
            )
        except SQLAlchemyError:
            logger.exception(f"Failed to store notification for user {user_id}")
            await session.rollback()
            return PushSendResult(
                success=False,
                ticket_ids=ticket_ids,
                error=PushErrorCode.STORAGE_ERROR,
                detail="Failed to store notification",
            )
        notification_id = notification.id

        # The provider already accepted the message; losing the tickets only
        # costs us receipt checks.
        try:
            await user_notifications.attach_ticket_ids(
                session,
                notification_id=notification_id,
                ticket_ids=ticket_ids,
            )
            await push_tokens.update_last_used(session, push_token=token_value)
        except SQLAlchemyError:
            logger.exception(f"Error updating notification {notification_id} with ticket ids")
            await session.rollback()

        logger.info(
            f"Sent {message.category.value} notification {notification_id} to user {user_id} "
            f"via {device_class.value}"
        )
        return PushSendResult(success=True, notification_id=notification_id, ticket_ids=ticket_ids)

    async def _discard_token(self, session: AsyncSession, *, user_id: int, token_value: str) -> None:
        try:
            await push_tokens.delete_push_token(session, user_id=user_id, push_token=token_value)
        except SQLAlchemyError:
            logger.exception(f"Failed to delete invalid push token for user {user_id}")
            await session.rollback()
