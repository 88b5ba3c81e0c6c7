"""
Expo Push Gateway Client — Delivers push payloads through the Expo push API.

One request carries every token of one recipient. The response is
classified into two failure classes with different accounting:

1. Transport failure — non-2xx status, network error, timeout, or a body
   without a receipt list. No per-token attempt is known to have been
   made, so the whole request raises GatewayTransportError.
2. Receipt failure — the request succeeded but individual receipts in
   `data` have status "error" (e.g. DeviceNotRegistered). Each becomes
   a failed DeliveryOutcome; each "ok" receipt a successful one.

Receipts are aligned positionally with the request's `to` list.
"""

import logging
from typing import Any, Optional

import httpx

from timely_push.core import config
from timely_push.models.delivery import DeliveryOutcome

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0
MISSING_RECEIPT = "missing_receipt"
RECEIPT_ERROR = "receipt_error"


class GatewayTransportError(Exception):
    """Raised when a push request fails as a whole (no receipts returned)."""

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        prefix = f"HTTP {status_code}: " if status_code is not None else ""
        super().__init__(f"Expo API error: {prefix}{reason}")
        self.reason = reason
        self.status_code = status_code

    @property
    def error_code(self) -> str:
        if self.status_code is not None:
            return f"http_{self.status_code}"
        return "transport_error"


class GatewayReceiptError(Exception):
    """Describes one token rejected by the gateway."""

    def __init__(self, token: str, error_code: str, message: Optional[str] = None) -> None:
        super().__init__(f"Push receipt error for {token[:24]}...: {error_code}")
        self.token = token
        self.error_code = error_code
        self.message = message

    @classmethod
    def from_outcome(cls, outcome: DeliveryOutcome) -> "GatewayReceiptError":
        return cls(outcome.token, outcome.error_code or RECEIPT_ERROR, outcome.message)


# ===================================================================
# Receipt Classification
# ===================================================================

def receipts_to_outcomes(tokens: list[str], receipts: list[Any]) -> list[DeliveryOutcome]:
    """
    Pair each requested token with its receipt.

    A token with no receipt at its position counts as failed, so a
    short receipt list can never be mistaken for full success.
    """
    if len(receipts) != len(tokens):
        logger.warning(
            "Expo returned %d receipts for %d tokens", len(receipts), len(tokens)
        )

    outcomes: list[DeliveryOutcome] = []
    for index, token in enumerate(tokens):
        receipt = receipts[index] if index < len(receipts) else None

        if not isinstance(receipt, dict):
            outcomes.append(
                DeliveryOutcome(token=token, success=False, error_code=MISSING_RECEIPT)
            )
            continue

        if receipt.get("status") == "ok":
            outcomes.append(DeliveryOutcome(token=token, success=True))
            continue

        details = receipt.get("details") or {}
        error_code = details.get("error") if isinstance(details, dict) else None
        outcomes.append(
            DeliveryOutcome(
                token=token,
                success=False,
                error_code=error_code or RECEIPT_ERROR,
                message=receipt.get("message"),
            )
        )

    return outcomes


# ===================================================================
# Client
# ===================================================================

class ExpoPushClient:
    """Thin adapter over the Expo push endpoint. Replaceable in tests."""

    def __init__(
        self,
        url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.url = url or config.EXPO_PUSH_URL
        self.access_token = access_token if access_token is not None else config.EXPO_ACCESS_TOKEN
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def send(self, payload: dict) -> list[DeliveryOutcome]:
        """
        Send one push request and return a DeliveryOutcome per token.

        Args:
            payload: Expo payload from build_push_payload (`to` is a list).

        Returns:
            list[DeliveryOutcome] aligned with payload["to"].

        Raises:
            GatewayTransportError: On non-2xx, network error, timeout,
                or a response without a receipt list.
        """
        tokens: list[str] = list(payload.get("to") or [])

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as exc:
            raise GatewayTransportError(f"request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GatewayTransportError(f"request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            reason = response.text or f"HTTP {response.status_code}"
            logger.warning(
                "Expo API error: status=%d, reason=%s, tokens=%d",
                response.status_code, reason, len(tokens),
            )
            raise GatewayTransportError(reason, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayTransportError(f"invalid JSON response: {exc}") from exc

        receipts = body.get("data") if isinstance(body, dict) else None
        if not isinstance(receipts, list):
            errors = body.get("errors") if isinstance(body, dict) else None
            raise GatewayTransportError(f"response carried no receipts: {errors or body}")

        outcomes = receipts_to_outcomes(tokens, receipts)

        failed = sum(1 for o in outcomes if not o.success)
        if failed:
            logger.warning(
                "Push receipt errors: %d of %d tokens rejected (%s)",
                failed,
                len(outcomes),
                ", ".join(sorted({o.error_code or RECEIPT_ERROR for o in outcomes if not o.success})),
            )
        else:
            logger.debug("Expo accepted all %d tokens", len(outcomes))

        return outcomes
