"""Unit tests for the Expo push adapter, with Expo's API faked by httpx.MockTransport."""

import json

import httpx
import pytest

from app.models.notification import NotificationCategory
from app.services.expo_push import (
    PUSH_CHUNK_LIMIT,
    RECEIPT_CHUNK_LIMIT,
    ExpoPushAdapter,
    is_expo_push_token,
)
from app.services.push_providers import PushErrorCode, PushMessage

PUSH_URL = "https://expo.test/push/send"
RECEIPTS_URL = "https://expo.test/push/getReceipts"


def _message(**overrides) -> PushMessage:
    defaults = {
        "category": NotificationCategory.messages,
        "title": "New message",
        "body": "You have a new message",
        "data": {"thread_id": 7},
    }
    return PushMessage(**{**defaults, **overrides})


def _adapter(handler, access_token: str | None = None) -> ExpoPushAdapter:
    return ExpoPushAdapter(
        access_token=access_token,
        push_url=PUSH_URL,
        receipts_url=RECEIPTS_URL,
        transport=httpx.MockTransport(handler),
    )


def _ok_tickets(request: httpx.Request) -> httpx.Response:
    messages = json.loads(request.content)
    return httpx.Response(
        200,
        json={"data": [{"status": "ok", "id": f"ticket-{i}"} for i, _ in enumerate(messages)]},
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    "token",
    [
        "ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]",
        "ExpoPushToken[abc123]",
        "0f8fad5b-d9cb-469f-a165-70867728950e",
    ],
)
def test_is_expo_push_token_accepts_valid_formats(token):
    assert is_expo_push_token(token) is True


@pytest.mark.unit
@pytest.mark.parametrize(
    "token",
    ["", "ExponentPushToken[abc", "a" * 64, "PushToken[abc]"],
)
def test_is_expo_push_token_rejects_other_strings(token):
    assert is_expo_push_token(token) is False


@pytest.mark.unit
async def test_invalid_token_short_circuits_without_request():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return _ok_tickets(request)

    adapter = _adapter(handler)
    result = await adapter.send("not-a-token", _message())
    await adapter.aclose()

    assert result.success is False
    assert result.error_code == PushErrorCode.INVALID_TOKEN
    assert requests == []


@pytest.mark.unit
async def test_send_returns_ticket_and_builds_message():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return _ok_tickets(request)

    adapter = _adapter(handler, access_token="expo-secret")
    token = "ExponentPushToken[device-1]"
    result = await adapter.send(token, _message())
    await adapter.aclose()

    assert result.success is True
    assert result.ticket_id == "ticket-0"

    request = captured[0]
    assert str(request.url) == PUSH_URL
    assert request.headers["Authorization"] == "Bearer expo-secret"
    body = json.loads(request.content)
    assert body[0]["to"] == token
    assert body[0]["title"] == "New message"
    assert body[0]["data"]["thread_id"] == 7
    assert body[0]["data"]["type"] == "messages"
    assert "timestamp" in body[0]["data"]


@pytest.mark.unit
async def test_device_not_registered_ticket_maps_to_permanent_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "status": "error",
                        "message": "not a registered push notification recipient",
                        "details": {"error": "DeviceNotRegistered"},
                    }
                ]
            },
        )

    adapter = _adapter(handler)
    result = await adapter.send("ExponentPushToken[gone]", _message())
    await adapter.aclose()

    assert result.success is False
    assert result.error_code == PushErrorCode.DEVICE_NOT_REGISTERED


@pytest.mark.unit
async def test_other_ticket_errors_are_provider_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"data": [{"status": "error", "message": "too big", "details": {"error": "MessageTooBig"}}]},
        )

    adapter = _adapter(handler)
    result = await adapter.send("ExponentPushToken[abc]", _message())
    await adapter.aclose()

    assert result.error_code == PushErrorCode.PROVIDER_ERROR
    assert result.error == "too big"


@pytest.mark.unit
async def test_send_batch_chunks_requests_and_keeps_order():
    chunk_sizes = []

    def handler(request: httpx.Request) -> httpx.Response:
        chunk_sizes.append(len(json.loads(request.content)))
        return _ok_tickets(request)

    adapter = _adapter(handler)
    items = [(f"ExponentPushToken[{i}]", _message()) for i in range(PUSH_CHUNK_LIMIT + 20)]
    items.insert(5, ("bogus", _message()))
    results = await adapter.send_batch(items)
    await adapter.aclose()

    assert chunk_sizes == [PUSH_CHUNK_LIMIT, 20]
    assert len(results) == len(items)
    assert results[5].error_code == PushErrorCode.INVALID_TOKEN
    assert all(result.success for index, result in enumerate(results) if index != 5)


@pytest.mark.unit
async def test_failed_chunk_marks_its_messages_as_provider_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream unavailable")

    adapter = _adapter(handler)
    results = await adapter.send_batch(
        [("ExponentPushToken[a]", _message()), ("ExponentPushToken[b]", _message())]
    )
    await adapter.aclose()

    assert [result.error_code for result in results] == [PushErrorCode.PROVIDER_ERROR] * 2


@pytest.mark.unit
async def test_network_error_is_contained():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = _adapter(handler)
    result = await adapter.send("ExponentPushToken[a]", _message())
    await adapter.aclose()

    assert result.success is False
    assert result.error_code == PushErrorCode.PROVIDER_ERROR


@pytest.mark.unit
@pytest.mark.parametrize(
    "body",
    [
        [{"status": "ok", "id": "ticket-0"}],
        "accepted",
        {"data": {"status": "ok"}},
        {"data": ["not a ticket"]},
    ],
)
async def test_unexpected_push_response_body_is_provider_error(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    adapter = _adapter(handler)
    result = await adapter.send("ExponentPushToken[a]", _message())
    await adapter.aclose()

    assert result.success is False
    assert result.error_code == PushErrorCode.PROVIDER_ERROR


@pytest.mark.unit
async def test_get_receipts_returns_known_receipts_in_request_order():
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == RECEIPTS_URL
        assert json.loads(request.content) == {"ids": ["t1", "t2", "t3"]}
        return httpx.Response(
            200,
            json={
                "data": {
                    "t3": {"status": "ok"},
                    "t1": {
                        "status": "error",
                        "message": "device gone",
                        "details": {"error": "DeviceNotRegistered"},
                    },
                }
            },
        )

    adapter = _adapter(handler)
    receipts = await adapter.get_receipts(["t1", "t2", "t3"])
    await adapter.aclose()

    assert [receipt.ticket_id for receipt in receipts] == ["t1", "t3"]
    assert receipts[0].status == "error"
    assert receipts[0].details == {"error": "DeviceNotRegistered"}
    assert receipts[1].status == "ok"


@pytest.mark.unit
async def test_get_receipts_raises_on_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    adapter = _adapter(handler)
    with pytest.raises(httpx.HTTPStatusError):
        await adapter.get_receipts(["t1"])
    await adapter.aclose()


@pytest.mark.unit
async def test_get_receipts_rejects_oversized_chunks():
    adapter = _adapter(_ok_tickets)
    with pytest.raises(ValueError):
        await adapter.get_receipts([str(i) for i in range(RECEIPT_CHUNK_LIMIT + 1)])
    await adapter.aclose()


@pytest.mark.unit
@pytest.mark.parametrize("body", [[{"status": "ok"}], {"data": ["t1"]}])
async def test_get_receipts_rejects_unexpected_body(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    adapter = _adapter(handler)
    with pytest.raises(ValueError):
        await adapter.get_receipts(["t1"])
    await adapter.aclose()


@pytest.mark.unit
async def test_get_receipts_without_data_returns_nothing():
    adapter = _adapter(lambda request: httpx.Response(200, json={"data": None}))
    receipts = await adapter.get_receipts(["t1"])
    await adapter.aclose()

    assert receipts == []


@pytest.mark.unit
async def test_explicit_data_type_overrides_category():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.extend(json.loads(request.content))
        return _ok_tickets(request)

    adapter = _adapter(handler)
    await adapter.send("ExponentPushToken[a]", _message(data={"type": "test"}))
    await adapter.aclose()

    assert captured[0]["data"]["type"] == "test"
