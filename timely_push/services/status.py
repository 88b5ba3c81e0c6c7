"""
Status Persister — The only writer of a notification record's delivery status.

Each trigger kind stores its records in its own table, and the tables do
not share column names: `chat_notifications` uses `is_sent`, `sent_at`
and `error_message`, while the guest-chat and itinerary tables use
`push_sent`, `push_sent_at` and `push_error`. All of them carry a
`push_status` lifecycle column; rows written before it existed hold
NULL there, which counts as 'pending'.

Lifecycle: pending -> dispatching -> {sent, partial_failure, failed,
no_recipients}. Every write is conditional on the status it expects to
replace, so a re-delivered trigger cannot move a record backwards or
overwrite a terminal status.

A failed final write raises PersistenceError. Pushes already handed to
the gateway are not recalled.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, NamedTuple, Optional

from timely_push.models.delivery import can_transition

logger = logging.getLogger(__name__)


class StatusColumns(NamedTuple):
    """Column names a notification table uses for delivery state."""

    status: str
    sent_flag: str
    sent_at: str
    error: str


PUSH_COLUMNS = StatusColumns(
    status="push_status",
    sent_flag="push_sent",
    sent_at="push_sent_at",
    error="push_error",
)

CHAT_COLUMNS = StatusColumns(
    status="push_status",
    sent_flag="is_sent",
    sent_at="sent_at",
    error="error_message",
)

NOTIFICATION_TABLES: dict[str, str] = {
    "chat_message": "chat_notifications",
    "guest_chat": "guests_chat_notifications",
    "itinerary_module": "itinerary_module_notifications",
}

NOTIFICATION_COLUMNS: dict[str, StatusColumns] = {
    "chat_message": CHAT_COLUMNS,
    "guest_chat": PUSH_COLUMNS,
    "itinerary_module": PUSH_COLUMNS,
}

SENT_AT_STATUSES = frozenset({"sent", "partial_failure"})
ERROR_STATUSES = frozenset({"partial_failure", "failed"})


class PersistenceError(Exception):
    """Raised when a notification record cannot be read or written."""

    pass


class NotificationNotFoundError(Exception):
    """Raised when the notification record for a trigger does not exist."""

    pass


class StatusTransitionError(Exception):
    """Raised when a write would move a record backwards or re-enter a terminal state."""

    pass


class SupabaseStatusPersister:
    """Reads and writes delivery status on one notification table."""

    def __init__(
        self,
        table: str,
        client: Any = None,
        columns: StatusColumns = PUSH_COLUMNS,
    ) -> None:
        self.table = table
        self.columns = columns
        self._client = client
        self._committed: set[str] = set()

    @property
    def client(self) -> Any:
        if self._client is None:
            from timely_push.db.supabase_client import get_service_client

            self._client = get_service_client()
        return self._client

    async def current_status(self, notification_id: str) -> str:
        """
        Return the stored status of a record.

        Raises:
            NotificationNotFoundError: If no record has this id.
            PersistenceError: If the lookup fails.
        """
        def _query():
            return (
                self.client.table(self.table)
                .select(f"id, {self.columns.status}")
                .eq("id", notification_id)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_query)
        except Exception as exc:
            logger.error(
                "Database error looking up notification %s in %s: %s",
                notification_id, self.table, exc,
            )
            raise PersistenceError(f"Failed to look up notification: {exc}") from exc

        if not result.data:
            raise NotificationNotFoundError(
                f"Notification {notification_id} not found in {self.table}"
            )
        return result.data[0].get(self.columns.status) or "pending"

    async def mark_dispatching(self, notification_id: str) -> bool:
        """
        Claim a pending record for dispatch. A NULL status is claimable,
        matching how current_status reports it.

        Returns:
            True if this call moved the record to 'dispatching', False if
            another delivery of the same trigger got there first.

        Raises:
            PersistenceError: If the update fails.
        """
        def _query():
            return (
                self.client.table(self.table)
                .update({self.columns.status: "dispatching"})
                .eq("id", notification_id)
                .or_(f"{self.columns.status}.is.null,{self.columns.status}.eq.pending")
                .execute()
            )

        try:
            result = await asyncio.to_thread(_query)
        except Exception as exc:
            logger.error(
                "Failed to mark notification %s as dispatching: %s",
                notification_id, exc,
            )
            raise PersistenceError(f"Failed to claim notification: {exc}") from exc

        return bool(result.data)

    async def commit(
        self,
        notification_id: str,
        status: str,
        error_summary: Optional[str] = None,
    ) -> dict:
        """
        Write the final status once.

        The sent flag and sent-at timestamp are set only for sent /
        partial_failure, the error text only for partial_failure / failed.

        Returns:
            The column values that were written.

        Raises:
            StatusTransitionError: If `status` is not terminal or this
                record was already committed by this persister.
            PersistenceError: If the write fails or the record was no
                longer in 'dispatching'.
        """
        if not can_transition("dispatching", status):
            raise StatusTransitionError(f"Cannot move from 'dispatching' to '{status}'")
        if notification_id in self._committed:
            raise StatusTransitionError(
                f"Notification {notification_id} already has a final status"
            )

        delivered = status in SENT_AT_STATUSES
        update = {
            self.columns.status: status,
            self.columns.sent_flag: delivered,
            self.columns.sent_at: (
                datetime.now(timezone.utc).isoformat() if delivered else None
            ),
            self.columns.error: error_summary if status in ERROR_STATUSES else None,
        }

        def _query():
            return (
                self.client.table(self.table)
                .update(update)
                .eq("id", notification_id)
                .eq(self.columns.status, "dispatching")
                .execute()
            )

        try:
            result = await asyncio.to_thread(_query)
        except Exception as exc:
            logger.error(
                "Failed to update notification %s: %s", notification_id, exc
            )
            raise PersistenceError(f"Failed to update notification status: {exc}") from exc

        if not result.data:
            raise PersistenceError(
                f"Notification {notification_id} was not in 'dispatching' state"
            )

        self._committed.add(notification_id)
        logger.info(
            "Notification %s marked %s in %s", notification_id, status, self.table
        )
        return update


def persister_for(trigger_kind: str, client: Any = None) -> SupabaseStatusPersister:
    return SupabaseStatusPersister(
        NOTIFICATION_TABLES[trigger_kind],
        client=client,
        columns=NOTIFICATION_COLUMNS[trigger_kind],
    )
