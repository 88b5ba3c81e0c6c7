"""
Recipient Resolver — Maps a trigger scope to the set of people to notify.

Channel scopes read the active `chat_participants` of a channel, joined
with `users` and `guests`. Guest scopes target a single guest. In both
cases the sender is removed and duplicates (same email, any variant)
collapse into one recipient.

Resolution is all-or-nothing: if the population cannot be read, the
whole fan-out stops with ResolutionError before anything is sent.
"""

import asyncio
import logging
from typing import Any, Optional

from timely_push.models.delivery import (
    Guest,
    PushScope,
    RecipientIdentity,
    User,
    normalize_email,
)

logger = logging.getLogger(__name__)

PARTICIPANT_COLUMNS = (
    "id, participant_type, user_id, guest_id, "
    "users(email, first_name, last_name), "
    "guests(email, first_name, last_name)"
)


class ResolutionError(Exception):
    """Raised when the recipient population of a trigger cannot be determined."""

    pass


# ===================================================================
# Row helpers
# ===================================================================

def _first_row(joined: Any) -> Optional[dict]:
    """PostgREST returns embedded rows as a dict or a one-item list."""
    if isinstance(joined, list):
        return joined[0] if joined else None
    if isinstance(joined, dict):
        return joined
    return None


def _display_name(row: dict) -> Optional[str]:
    parts = [row.get("first_name") or "", row.get("last_name") or ""]
    name = " ".join(p.strip() for p in parts if p and p.strip())
    return name or None


def participant_to_identity(row: dict) -> Optional[RecipientIdentity]:
    """
    Convert one chat_participants row into a User or Guest identity.

    The `users` join wins when both are present. Returns None when
    neither join carries an email.
    """
    user = _first_row(row.get("users"))
    if user and user.get("email"):
        return User(email=user["email"], display_name=_display_name(user))

    guest = _first_row(row.get("guests"))
    if guest and guest.get("email"):
        return Guest(email=guest["email"], display_name=_display_name(guest))

    return None


def exclude_sender(
    identities: list[RecipientIdentity],
    sender_email: Optional[str],
) -> list[RecipientIdentity]:
    """
    Deduplicate by email and drop the sender.

    First occurrence wins, so ordering stays stable for logging.
    """
    sender_key = normalize_email(sender_email) if sender_email else None
    seen: dict[str, RecipientIdentity] = {}
    for identity in identities:
        if identity.key == sender_key:
            continue
        seen.setdefault(identity.key, identity)
    return list(seen.values())


# ===================================================================
# Resolver
# ===================================================================

class SupabaseRecipientSource:
    """Reads recipient populations from Supabase."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            from timely_push.db.supabase_client import get_service_client

            self._client = get_service_client()
        return self._client

    async def channel_participants(self, channel_id: str) -> list[RecipientIdentity]:
        """
        Load every active participant of a chat channel.

        Raises:
            ResolutionError: If the participants query fails.
        """
        def _query():
            return (
                self.client.table("chat_participants")
                .select(PARTICIPANT_COLUMNS)
                .eq("channel_id", channel_id)
                .eq("is_active", True)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_query)
        except Exception as exc:
            logger.error(
                "Failed to fetch participants for channel %s: %s",
                channel_id, exc,
            )
            raise ResolutionError(
                f"Failed to fetch participants for channel {channel_id}: {exc}"
            ) from exc

        identities: list[RecipientIdentity] = []
        for row in result.data or []:
            identity = participant_to_identity(row)
            if identity is None:
                logger.warning(
                    "No email found for participant %s — skipping",
                    row.get("id"),
                )
                continue
            identities.append(identity)

        logger.info(
            "Found %d participants in channel %s", len(identities), channel_id
        )
        return identities

    async def guest(self, guest_id: str) -> list[RecipientIdentity]:
        """
        Load a single guest by id. An unknown guest is an empty population.

        Raises:
            ResolutionError: If the guests query fails.
        """
        def _query():
            return (
                self.client.table("guests")
                .select("id, email, first_name, last_name")
                .eq("id", guest_id)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_query)
        except Exception as exc:
            logger.error("Failed to fetch guest %s: %s", guest_id, exc)
            raise ResolutionError(f"Failed to fetch guest {guest_id}: {exc}") from exc

        if not result.data or not result.data[0].get("email"):
            logger.info("Guest %s not found or has no email", guest_id)
            return []

        row = result.data[0]
        return [Guest(email=row["email"], display_name=_display_name(row))]


async def resolve_recipients(
    scope: PushScope,
    sender_email: Optional[str],
    source: Any,
) -> list[RecipientIdentity]:
    """
    Resolve a trigger scope into distinct recipients, sender excluded.

    Guest scopes use the email carried by the trigger when present and
    only fall back to a guest lookup when it is missing.

    Args:
        scope: The trigger's recipient population.
        sender_email: Email of the originating actor, or None.
        source: A recipient source (see SupabaseRecipientSource).

    Returns:
        Distinct RecipientIdentity list (possibly empty).

    Raises:
        ResolutionError: If the underlying population cannot be read.
    """
    if scope.kind == "channel":
        identities = await source.channel_participants(scope.scope_id)
    elif scope.guest_email:
        identities = [Guest(email=scope.guest_email)]
    else:
        identities = await source.guest(scope.scope_id)

    recipients = exclude_sender(identities, sender_email)

    logger.info(
        "Resolved %d recipients for %s %s (%d before sender/dedup filtering)",
        len(recipients), scope.kind, scope.scope_id, len(identities),
    )
    return recipients
