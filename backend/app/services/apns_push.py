import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt
from jose.exceptions import JOSEError

from app.core.config import Settings
from app.models.push_token import DeviceClass
from app.services.push_providers import (
    DeliveryResult,
    PushErrorCode,
    PushMessage,
    PushReceipt,
    mask_token,
)

logger = logging.getLogger(__name__)

APNS_PRODUCTION_HOST = "https://api.push.apple.com"
APNS_SANDBOX_HOST = "https://api.sandbox.push.apple.com"

# Apple rejects provider tokens older than an hour; refresh well before that.
PROVIDER_TOKEN_TTL_SECONDS = 50 * 60
NOTIFICATION_EXPIRY_SECONDS = 60 * 60

_DEVICE_TOKEN_RE = re.compile(r"[a-fA-F0-9]{64}")

_REASON_CODES = {
    "Unregistered": PushErrorCode.DEVICE_NOT_REGISTERED,
    "BadDeviceToken": PushErrorCode.INVALID_TOKEN,
    "BadTopic": PushErrorCode.INVALID_BUNDLE_ID,
    "MissingTopic": PushErrorCode.INVALID_BUNDLE_ID,
}


def is_valid_device_token(token: str) -> bool:
    """APNs device tokens are exactly 64 hexadecimal characters."""
    return isinstance(token, str) and _DEVICE_TOKEN_RE.fullmatch(token) is not None


class APNsCredentials:
    """Signing material for token based APNs authentication."""

    def __init__(self, *, private_key: str, key_id: str, team_id: str, bundle_id: str) -> None:
        self.private_key = private_key
        self.key_id = key_id
        self.team_id = team_id
        self.bundle_id = bundle_id

    @classmethod
    def load(
        cls,
        key_path: str,
        *,
        key_id: Optional[str],
        team_id: Optional[str],
        bundle_id: Optional[str],
    ) -> Optional["APNsCredentials"]:
        """Read the ``.p8`` key; returns None when any piece is missing."""
        if not (key_id and team_id and bundle_id):
            logger.warning("APNs key id, team id or bundle id not configured")
            return None
        path = Path(key_path)
        try:
            private_key = path.read_text()
        except OSError as exc:
            logger.warning(f"APNs key file not readable at {path}: {exc}")
            return None
        if not private_key.strip():
            logger.warning(f"APNs key file at {path} is empty")
            return None
        try:
            key = serialization.load_pem_private_key(private_key.encode(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            logger.warning(f"APNs key file at {path} is not a PEM private key: {exc}")
            return None
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            logger.warning(f"APNs key file at {path} does not hold an EC private key")
            return None
        return cls(private_key=private_key, key_id=key_id, team_id=team_id, bundle_id=bundle_id)


class APNsPushAdapter:
    """Sends to native iOS devices straight through Apple's push gateway.

    Without credentials the adapter stays disabled: every send fails with
    ``KEY_FILE_MISSING`` and no request is made.
    """

    device_class = DeviceClass.native_apple
    receipt_chunk_size = 100

    def __init__(
        self,
        credentials: Optional[APNsCredentials],
        *,
        production: bool = False,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.credentials = credentials
        self.host = APNS_PRODUCTION_HOST if production else APNS_SANDBOX_HOST
        self._provider_token: Optional[str] = None
        self._provider_token_issued_at = 0.0
        self._client = httpx.AsyncClient(
            base_url=self.host,
            http2=True,
            timeout=timeout,
            transport=transport,
        )
        if credentials is None:
            logger.warning("APNs credentials missing; native iOS push is disabled")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "APNsPushAdapter":
        credentials = APNsCredentials.load(
            settings.APNS_KEY_PATH,
            key_id=settings.APNS_KEY_ID,
            team_id=settings.APNS_TEAM_ID,
            bundle_id=settings.APNS_BUNDLE_ID,
        )
        return cls(
            credentials,
            production=settings.APNS_PRODUCTION,
            timeout=settings.PUSH_REQUEST_TIMEOUT,
            transport=transport,
        )

    @property
    def enabled(self) -> bool:
        return self.credentials is not None

    def _get_provider_token(self) -> str:
        now = time.time()
        if self._provider_token and now - self._provider_token_issued_at < PROVIDER_TOKEN_TTL_SECONDS:
            return self._provider_token
        assert self.credentials is not None
        self._provider_token = jwt.encode(
            {"iss": self.credentials.team_id, "iat": int(now)},
            self.credentials.private_key,
            algorithm="ES256",
            headers={"kid": self.credentials.key_id},
        )
        self._provider_token_issued_at = now
        return self._provider_token

    def build_payload(self, message: PushMessage) -> Dict[str, Any]:
        return {
            "aps": {
                "alert": {"title": message.title, "body": message.body},
                "badge": 1,
                "sound": "default",
            },
            "type": message.category.value,
            **message.data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def send(self, token: str, message: PushMessage) -> DeliveryResult:
        """Send one notification; Apple answers synchronously with accept or reject.

        Error handling:
            - Unregistered / 410: token is dead, caller should delete it
            - BadDeviceToken: malformed token
            - BadTopic / MissingTopic: bundle id misconfigured
            - anything else, timeouts and network errors: APNS_ERROR
        """
        if not self.enabled:
            return DeliveryResult.failed(PushErrorCode.KEY_FILE_MISSING, "APNs key file missing")

        if not is_valid_device_token(token):
            logger.warning(f"Rejecting malformed APNs device token: {mask_token(token)}")
            return DeliveryResult.failed(PushErrorCode.INVALID_TOKEN, "Invalid device token format")

        assert self.credentials is not None
        try:
            provider_token = self._get_provider_token()
        except JOSEError as exc:
            logger.error(f"Failed to sign APNs provider token: {exc}")
            return DeliveryResult.failed(PushErrorCode.APNS_ERROR, "Failed to sign APNs provider token")

        headers = {
            "authorization": f"bearer {provider_token}",
            "apns-topic": self.credentials.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
            "apns-expiration": str(int(time.time()) + NOTIFICATION_EXPIRY_SECONDS),
        }

        try:
            response = await self._client.post(
                f"/3/device/{token}",
                json=self.build_payload(message),
                headers=headers,
            )
        except httpx.TimeoutException:
            logger.warning(f"APNs request timed out for token: {mask_token(token)}")
            return DeliveryResult.failed(PushErrorCode.APNS_ERROR, "APNs request timed out")
        except httpx.HTTPError as exc:
            logger.error(f"Failed to send APNs notification: {exc}", exc_info=True)
            return DeliveryResult.failed(PushErrorCode.APNS_ERROR, str(exc))

        if response.status_code == 200:
            logger.info(f"iOS notification sent successfully to token: {mask_token(token)}")
            return DeliveryResult.ok(response.headers.get("apns-id"))

        reason = self._rejection_reason(response)
        code = _REASON_CODES.get(reason or "", PushErrorCode.APNS_ERROR)
        if response.status_code == 410:
            code = PushErrorCode.DEVICE_NOT_REGISTERED
        logger.error(
            f"APNs rejected notification (status {response.status_code}, reason {reason}) "
            f"for token: {mask_token(token)}"
        )
        return DeliveryResult.failed(code, reason or "Failed to send iOS notification")

    @staticmethod
    def _rejection_reason(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("reason")
        return None

    async def get_receipts(self, ticket_ids: Sequence[str]) -> List[PushReceipt]:
        """APNs has no receipt endpoint; an ``apns-id`` means Apple accepted the push."""
        return [PushReceipt(ticket_id=ticket_id, status="ok") for ticket_id in ticket_ids]

    async def aclose(self) -> None:
        await self._client.aclose()
