import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from app.core.config import Settings
from app.models.push_token import DeviceClass
from app.services.push_providers import (
    DeliveryResult,
    PushErrorCode,
    PushMessage,
    PushReceipt,
    chunked,
    mask_token,
)

logger = logging.getLogger(__name__)

# Expo rejects requests carrying more than this many messages / receipt ids
PUSH_CHUNK_LIMIT = 100
RECEIPT_CHUNK_LIMIT = 300

_UUID_TOKEN_RE = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_expo_push_token(token: str) -> bool:
    """Mirror of the Expo SDK token check: bracketed push tokens or bare UUIDs."""
    if not isinstance(token, str):
        return False
    if token.startswith(("ExponentPushToken[", "ExpoPushToken[")) and token.endswith("]"):
        return True
    return bool(_UUID_TOKEN_RE.match(token))


def _ticket_error_code(ticket: Dict[str, Any]) -> PushErrorCode:
    details = ticket.get("details") or {}
    if details.get("error") == "DeviceNotRegistered":
        return PushErrorCode.DEVICE_NOT_REGISTERED
    return PushErrorCode.PROVIDER_ERROR


class ExpoPushAdapter:
    """Sends to managed devices through Expo's push relay.

    A ticket only proves Expo accepted the message; delivery is confirmed
    later through :meth:`get_receipts`.
    """

    device_class = DeviceClass.managed
    receipt_chunk_size = RECEIPT_CHUNK_LIMIT

    def __init__(
        self,
        *,
        access_token: Optional[str] = None,
        push_url: str,
        receipts_url: str,
        sound: str = "default",
        priority: str = "high",
        channel_id: str = "default",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.push_url = push_url
        self.receipts_url = receipts_url
        self.sound = sound
        self.priority = priority
        self.channel_id = channel_id
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ExpoPushAdapter":
        return cls(
            access_token=settings.EXPO_ACCESS_TOKEN,
            push_url=settings.EXPO_PUSH_URL,
            receipts_url=settings.EXPO_RECEIPTS_URL,
            sound=settings.EXPO_PUSH_SOUND,
            priority=settings.EXPO_PUSH_PRIORITY,
            channel_id=settings.EXPO_PUSH_CHANNEL_ID,
            timeout=settings.PUSH_REQUEST_TIMEOUT,
            transport=transport,
        )

    def build_message(self, token: str, message: PushMessage) -> Dict[str, Any]:
        return {
            "to": token,
            "sound": self.sound,
            "title": message.title,
            "body": message.body,
            "data": {
                "type": message.category.value,
                **message.data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            "priority": self.priority,
            "channelId": self.channel_id,
        }

    async def send(self, token: str, message: PushMessage) -> DeliveryResult:
        results = await self.send_batch([(token, message)])
        return results[0]

    async def send_batch(self, items: Sequence[Tuple[str, PushMessage]]) -> List[DeliveryResult]:
        """Submit ``(token, message)`` pairs, returning one result per pair in order.

        Malformed tokens fail with ``INVALID_TOKEN`` before any request is made.
        """
        results: List[Optional[DeliveryResult]] = [None] * len(items)
        pending: List[Tuple[int, Dict[str, Any]]] = []

        for index, (token, message) in enumerate(items):
            if not is_expo_push_token(token):
                logger.warning(f"Rejecting malformed Expo push token: {mask_token(token)}")
                results[index] = DeliveryResult.failed(
                    PushErrorCode.INVALID_TOKEN, "Invalid Expo push token"
                )
                continue
            pending.append((index, self.build_message(token, message)))

        for chunk in chunked(pending, PUSH_CHUNK_LIMIT):
            tickets = await self._submit_chunk([payload for _, payload in chunk])
            for position, (index, payload) in enumerate(chunk):
                if tickets is None or position >= len(tickets):
                    results[index] = DeliveryResult.failed(
                        PushErrorCode.PROVIDER_ERROR, "No ticket returned by Expo"
                    )
                    continue
                ticket = tickets[position]
                if not isinstance(ticket, dict):
                    results[index] = DeliveryResult.failed(
                        PushErrorCode.PROVIDER_ERROR, "Malformed ticket returned by Expo"
                    )
                    continue
                if ticket.get("status") == "ok":
                    results[index] = DeliveryResult.ok(ticket.get("id"))
                else:
                    code = _ticket_error_code(ticket)
                    logger.warning(
                        f"Expo rejected push to {mask_token(payload['to'])}: {ticket.get('message')}"
                    )
                    results[index] = DeliveryResult.failed(code, ticket.get("message"))

        return [result for result in results if result is not None]

    async def _submit_chunk(self, messages: List[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
        try:
            response = await self._client.post(self.push_url, json=messages)
        except httpx.TimeoutException:
            logger.warning(f"Expo push request timed out for {len(messages)} message(s)")
            return None
        except httpx.HTTPError as exc:
            logger.error(f"Failed to send Expo push chunk: {exc}", exc_info=True)
            return None

        if response.status_code != 200:
            logger.error(
                f"Expo push request failed (status {response.status_code}): {response.text}"
            )
            return None

        try:
            body = response.json()
        except ValueError:
            logger.error("Expo push response was not valid JSON")
            return None
        tickets = body.get("data") if isinstance(body, dict) else None
        if not isinstance(tickets, list):
            logger.error(f"Unexpected Expo push response body: {response.text}")
            return None
        return tickets

    async def get_receipts(self, ticket_ids: Sequence[str]) -> List[PushReceipt]:
        """Fetch receipts for at most ``RECEIPT_CHUNK_LIMIT`` ticket ids.

        Raises ``httpx.HTTPError`` when Expo cannot be reached or rejects the
        request, and ``ValueError`` when the response body is not a receipt
        map; the reconciler decides how to contain that.
        """
        if len(ticket_ids) > RECEIPT_CHUNK_LIMIT:
            raise ValueError(f"At most {RECEIPT_CHUNK_LIMIT} receipt ids per request")

        response = await self._client.post(self.receipts_url, json={"ids": list(ticket_ids)})
        response.raise_for_status()
        body = response.json()
        data = (body.get("data") or {}) if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Expo receipts response body: {response.text}")

        receipts = []
        for ticket_id in ticket_ids:
            receipt = data.get(ticket_id)
            if not isinstance(receipt, dict):
                # Expo has not produced a receipt yet (or it already expired)
                continue
            receipts.append(
                PushReceipt(
                    ticket_id=ticket_id,
                    status=receipt.get("status", "unknown"),
                    message=receipt.get("message"),
                    details=receipt.get("details") or {},
                )
            )
        return receipts

    async def aclose(self) -> None:
        await self._client.aclose()
