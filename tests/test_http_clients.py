import json

import httpx
import pytest

from accrual_engine.core.exceptions import AssignmentServiceError, NotificationGatewayError
from accrual_engine.services.notification_service import NotificationService
from accrual_engine.services.recovery_assignment_service import RecoveryAssignmentService

SMS_URL = "https://sms.example.test/api/v3/sms/send"


def sms_service(handler):
    return NotificationService(api_url=SMS_URL, api_token="secret", sender_id="LOANCO",
                               transport=httpx.MockTransport(handler))


@pytest.mark.parametrize("raw, expected", [
    ("9876543210", "919876543210"),
    ("09876543210", "919876543210"),
    ("+91 98765-43210", "919876543210"),
    ("919876543210", "919876543210"),
])
def test_phone_number_normalization(raw, expected):
    assert NotificationService._normalize_phone_number(raw) == expected


def test_phone_number_rejects_short_numbers():
    with pytest.raises(ValueError):
        NotificationService._normalize_phone_number("12345")


def test_message_is_sanitized_to_ascii():
    assert NotificationService._sanitize_message("Pay ₹500 – today’s due") == "Pay Rs. 500 - today's due"


@pytest.mark.asyncio
async def test_send_sms_posts_normalized_payload():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "success", "data": {"uid": "abc123", "status": "Delivered"}})

    result = await sms_service(handler).send_sms("9876543210", "Hello")

    assert result["success"] is True
    assert result["message_id"] == "abc123"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"recipient": "919876543210", "sender_id": "LOANCO", "type": "plain", "message": "Hello"}


@pytest.mark.asyncio
async def test_send_sms_raises_on_gateway_error():
    def handler(request):
        return httpx.Response(400, json={"status": "error", "message": "Insufficient balance"})

    with pytest.raises(NotificationGatewayError, match="Insufficient balance"):
        await sms_service(handler).send_sms("9876543210", "Hello")


@pytest.mark.asyncio
async def test_send_sms_wraps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NotificationGatewayError):
        await sms_service(handler).send_sms("9876543210", "Hello")


@pytest.mark.asyncio
async def test_send_sms_requires_credentials(monkeypatch):
    from accrual_engine.core import Settings

    monkeypatch.setattr(Settings, "SMS_API_TOKEN", None)
    monkeypatch.setattr(Settings, "SMS_SENDER_ID", None)

    with pytest.raises(NotificationGatewayError):
        await NotificationService(api_url=SMS_URL).send_sms("9876543210", "Hello")


@pytest.mark.asyncio
async def test_assign_recovery_officer():
    def handler(request: httpx.Request):
        assert request.url.path == "/admin/loans/12/recovery-officer"
        assert request.headers["Authorization"] == "Bearer admin-secret"
        return httpx.Response(200, json={"officer_id": 7})

    service = RecoveryAssignmentService("https://admin.example.test/admin/", "admin-secret",
                                        transport=httpx.MockTransport(handler))

    assert await service.assign_recovery_officer(12) == 7


@pytest.mark.asyncio
async def test_assign_recovery_officer_http_error():
    service = RecoveryAssignmentService("https://admin.example.test", "admin-secret",
                                        transport=httpx.MockTransport(lambda request: httpx.Response(500)))

    with pytest.raises(AssignmentServiceError):
        await service.assign_recovery_officer(12)


@pytest.mark.asyncio
async def test_assign_recovery_officer_requires_url(monkeypatch):
    from accrual_engine.core import Settings

    monkeypatch.setattr(Settings, "RECOVERY_ASSIGNMENT_URL", None)

    with pytest.raises(AssignmentServiceError):
        await RecoveryAssignmentService().assign_recovery_officer(12)
