"""
Token Repository — Looks up the Expo push tokens registered by a recipient.

Tokens come from the `get_guest_push_tokens` RPC, which returns one row
per registered device. An empty list is a normal answer (the recipient
never enabled push). A failed lookup raises TokenLookupError so the
batcher can count it against that recipient alone.
"""

import asyncio
import logging
from typing import Any

from timely_push.models.delivery import DeliveryToken, RecipientIdentity

logger = logging.getLogger(__name__)

TOKEN_RPC = "get_guest_push_tokens"
TOKEN_COLUMN = "expo_push_token"


class TokenLookupError(Exception):
    """Raised when a recipient's push tokens cannot be fetched."""

    def __init__(self, recipient_email: str, reason: str) -> None:
        super().__init__(f"Token lookup failed for {recipient_email}: {reason}")
        self.recipient_email = recipient_email
        self.reason = reason


def rows_to_tokens(owner: RecipientIdentity, rows: list[dict]) -> list[DeliveryToken]:
    """Drop blank and repeated tokens, keeping the order the RPC returned."""
    tokens: list[DeliveryToken] = []
    seen: set[str] = set()
    for row in rows:
        value = (row or {}).get(TOKEN_COLUMN)
        if not value or not isinstance(value, str):
            continue
        value = value.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        tokens.append(DeliveryToken(owner=owner, token=value))
    return tokens


class SupabaseTokenRepository:
    """Reads push tokens through the Supabase RPC."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            from timely_push.db.supabase_client import get_service_client

            self._client = get_service_client()
        return self._client

    async def tokens_for(self, recipient: RecipientIdentity) -> list[DeliveryToken]:
        """
        Return the recipient's delivery tokens (possibly empty).

        Raises:
            TokenLookupError: If the RPC fails.
        """
        def _query():
            return self.client.rpc(TOKEN_RPC, {"guest_email": recipient.email}).execute()

        try:
            result = await asyncio.to_thread(_query)
        except Exception as exc:
            raise TokenLookupError(recipient.email, str(exc)) from exc

        tokens = rows_to_tokens(recipient, result.data or [])

        if tokens:
            logger.debug("Found %d tokens for %s", len(tokens), recipient.email)
        else:
            logger.info("No push tokens found for %s", recipient.email)
        return tokens
