"""
Expo Push Gateway Client Verification

Tests that:
1. A 200 response with all "ok" receipts yields one successful outcome per token
2. "error" receipts become failed outcomes carrying the Expo error code
3. Missing receipts count as failures (never silently successful)
4. Non-2xx responses, network errors and timeouts raise GatewayTransportError
5. Requests carry the JSON headers and, when configured, the access token

Run with: pytest tests/test_expo_push_client.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from timely_push.models.delivery import DeliveryOutcome
from timely_push.services.expo import (
    MISSING_RECEIPT,
    ExpoPushClient,
    GatewayReceiptError,
    GatewayTransportError,
    receipts_to_outcomes,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _payload(*tokens: str) -> dict:
    return {
        "to": list(tokens),
        "title": "Summer Gala - Jordan",
        "body": "Hello",
        "data": {"notificationId": "notif-1"},
        "sound": "default",
        "badge": 1,
        "priority": "high",
    }


def _mock_http_client(response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


def _mock_response(status_code: int = 200, body=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = body
    return response


# ===================================================================
# Test Class: receipts_to_outcomes (pure)
# ===================================================================

class TestReceiptsToOutcomes:
    """Tests for positional receipt classification."""

    def test_ok_receipts_are_successes(self):
        outcomes = receipts_to_outcomes(
            ["t1", "t2"], [{"status": "ok", "id": "a"}, {"status": "ok", "id": "b"}]
        )
        assert [o.success for o in outcomes] == [True, True]
        assert [o.token for o in outcomes] == ["t1", "t2"]

    def test_error_receipt_carries_expo_error_code(self):
        outcomes = receipts_to_outcomes(
            ["t1", "t2"],
            [
                {"status": "ok", "id": "a"},
                {
                    "status": "error",
                    "message": "\"t2\" is not a registered push notification recipient",
                    "details": {"error": "DeviceNotRegistered"},
                },
            ],
        )
        assert outcomes[0].success is True
        assert outcomes[1].success is False
        assert outcomes[1].error_code == "DeviceNotRegistered"
        assert "not a registered" in outcomes[1].message

    def test_error_receipt_without_details_gets_generic_code(self):
        outcomes = receipts_to_outcomes(["t1"], [{"status": "error", "message": "boom"}])
        assert outcomes[0].error_code == "receipt_error"

    def test_short_receipt_list_marks_missing_tokens_failed(self):
        outcomes = receipts_to_outcomes(["t1", "t2", "t3"], [{"status": "ok"}])
        assert [o.success for o in outcomes] == [True, False, False]
        assert outcomes[1].error_code == MISSING_RECEIPT

    def test_non_dict_receipt_is_failure(self):
        outcomes = receipts_to_outcomes(["t1"], ["garbage"])
        assert outcomes[0].success is False


# ===================================================================
# Test Class: ExpoPushClient.send
# ===================================================================

class TestExpoPushClientSend:
    """Tests for HTTP delivery and failure classification."""

    @pytest.mark.asyncio
    async def test_successful_delivery_returns_outcome_per_token(self):
        response = _mock_response(
            200, {"data": [{"status": "ok", "id": "r1"}, {"status": "ok", "id": "r2"}]}
        )
        mock_client = _mock_http_client(response)

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            outcomes = await ExpoPushClient(url="https://push.test/send").send(_payload("t1", "t2"))

        assert len(outcomes) == 2
        assert all(o.success for o in outcomes)

    @pytest.mark.asyncio
    async def test_request_posts_payload_to_configured_url(self):
        response = _mock_response(200, {"data": [{"status": "ok"}]})
        mock_client = _mock_http_client(response)
        payload = _payload("t1")

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            await ExpoPushClient(url="https://push.test/send").send(payload)

        call = mock_client.post.call_args
        assert call.args[0] == "https://push.test/send"
        assert call.kwargs["json"] == payload
        assert call.kwargs["headers"]["Content-Type"] == "application/json"
        assert call.kwargs["headers"]["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_access_token_sent_as_bearer(self):
        response = _mock_response(200, {"data": [{"status": "ok"}]})
        mock_client = _mock_http_client(response)

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            await ExpoPushClient(url="https://push.test/send", access_token="expo-secret").send(
                _payload("t1")
            )

        headers = mock_client.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer expo-secret"

    @pytest.mark.asyncio
    async def test_no_authorization_header_without_token(self):
        response = _mock_response(200, {"data": [{"status": "ok"}]})
        mock_client = _mock_http_client(response)

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            await ExpoPushClient(url="https://push.test/send", access_token="").send(_payload("t1"))

        assert "Authorization" not in mock_client.post.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_receipt_errors_do_not_raise(self):
        """200 with per-token errors is not a transport failure."""
        response = _mock_response(
            200,
            {
                "data": [
                    {"status": "ok"},
                    {"status": "error", "details": {"error": "DeviceNotRegistered"}},
                ]
            },
        )
        mock_client = _mock_http_client(response)

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            outcomes = await ExpoPushClient(url="https://push.test/send").send(_payload("t1", "t2"))

        assert [o.success for o in outcomes] == [True, False]

    @pytest.mark.asyncio
    async def test_non_2xx_raises_transport_error(self):
        response = _mock_response(500, None, text="Internal Server Error")
        mock_client = _mock_http_client(response)

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(GatewayTransportError) as exc_info:
                await ExpoPushClient(url="https://push.test/send").send(_payload("t1", "t2"))

        assert exc_info.value.status_code == 500
        assert exc_info.value.error_code == "http_500"
        assert "Internal Server Error" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_raises_transport_error(self):
        mock_client = _mock_http_client(side_effect=httpx.ReadTimeout("timed out"))

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(GatewayTransportError, match="timed out"):
                await ExpoPushClient(url="https://push.test/send").send(_payload("t1"))

    @pytest.mark.asyncio
    async def test_network_error_raises_transport_error(self):
        mock_client = _mock_http_client(side_effect=httpx.ConnectError("connection refused"))

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(GatewayTransportError) as exc_info:
                await ExpoPushClient(url="https://push.test/send").send(_payload("t1"))

        assert exc_info.value.error_code == "transport_error"

    @pytest.mark.asyncio
    async def test_response_without_receipts_raises_transport_error(self):
        response = _mock_response(200, {"errors": [{"code": "PUSH_TOO_MANY_EXPERIENCE_IDS"}]})
        mock_client = _mock_http_client(response)

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(GatewayTransportError, match="no receipts"):
                await ExpoPushClient(url="https://push.test/send").send(_payload("t1"))

    @pytest.mark.asyncio
    async def test_invalid_json_raises_transport_error(self):
        response = _mock_response(200)
        response.json.side_effect = ValueError("Expecting value")
        mock_client = _mock_http_client(response)

        with patch("timely_push.services.expo.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(GatewayTransportError, match="invalid JSON"):
                await ExpoPushClient(url="https://push.test/send").send(_payload("t1"))


# ===================================================================
# Test Class: GatewayReceiptError
# ===================================================================

class TestGatewayReceiptError:

    def test_from_outcome_keeps_code_and_token(self):
        outcome = DeliveryOutcome(
            token="ExponentPushToken[abc]", success=False, error_code="DeviceNotRegistered"
        )
        error = GatewayReceiptError.from_outcome(outcome)
        assert error.token == "ExponentPushToken[abc]"
        assert error.error_code == "DeviceNotRegistered"
        assert "DeviceNotRegistered" in str(error)
