"""
Push Fan-out Pipeline — Runs one notification from trigger to final status.

1. Check the notification record exists and is still 'pending'
2. Resolve recipients (ResolutionError aborts here; record stays 'pending')
3. Claim the record ('pending' -> 'dispatching')
4. Dispatch to every recipient with bounded concurrency
5. Derive the final status from the aggregated outcomes
6. Commit status, sent_at and error summary exactly once

A trigger for a record that is no longer pending (re-delivered webhook)
is reported as skipped and dispatches nothing.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from timely_push.core import config
from timely_push.models.delivery import PayloadSeed, PushScope
from timely_push.services.aggregation import (
    AggregateResult,
    build_error_summary,
    derive_status,
)
from timely_push.services.dispatch import dispatch_to_recipients
from timely_push.services.expo import ExpoPushClient
from timely_push.services.recipients import SupabaseRecipientSource, resolve_recipients
from timely_push.services.status import persister_for
from timely_push.services.tokens import SupabaseTokenRepository

logger = logging.getLogger(__name__)


class FanoutResult(BaseModel):
    """Outcome of one pipeline run, returned inline to the trigger caller."""

    notification_id: str
    status: str
    sent: int = 0
    errors: int = 0
    recipients: int = 0
    skipped: bool = False
    error_summary: Optional[str] = None
    error_counts: dict[str, int] = Field(default_factory=dict)


class PushFanout:
    """
    Wires the pipeline stages together.

    Every collaborator can be replaced; the defaults talk to Supabase
    and the Expo push API.
    """

    def __init__(
        self,
        *,
        recipient_source: Any = None,
        token_repository: Any = None,
        gateway: Any = None,
        persister_factory: Any = None,
        concurrency_limit: Optional[int] = None,
        recipient_timeout: Optional[float] = None,
    ) -> None:
        self.recipient_source = recipient_source or SupabaseRecipientSource()
        self.token_repository = token_repository or SupabaseTokenRepository()
        self.gateway = gateway or ExpoPushClient()
        self.persister_factory = persister_factory or persister_for
        self.concurrency_limit, self.recipient_timeout = config.validate_push_config(
            concurrency_limit, recipient_timeout
        )

    async def run(
        self,
        scope: PushScope,
        seed: PayloadSeed,
        *,
        deadline: Optional[float] = None,
    ) -> FanoutResult:
        """
        Deliver one notification and persist its final status.

        Args:
            scope: Who the notification is for.
            seed: Event fields for the payload (carries the notification id).
            deadline: Optional overall dispatch budget in seconds.

        Returns:
            FanoutResult with the final status and counts.

        Raises:
            NotificationNotFoundError: The notification record does not exist.
            ResolutionError: The recipient population could not be read.
            PersistenceError: The status could not be read or written.
        """
        notification_id = seed.notification_id
        persister = self.persister_factory(seed.trigger_kind)

        logger.info(
            "Processing %s notification %s (scope=%s:%s, sender=%s)",
            seed.trigger_kind, notification_id, scope.kind, scope.scope_id,
            seed.sender_email,
        )

        current = await persister.current_status(notification_id)
        if current != "pending":
            logger.info(
                "Notification %s already has status='%s' — skipping",
                notification_id, current,
            )
            return FanoutResult(notification_id=notification_id, status=current, skipped=True)

        recipients = await resolve_recipients(scope, seed.sender_email, self.recipient_source)

        if not await persister.mark_dispatching(notification_id):
            logger.info(
                "Notification %s was claimed by another delivery — skipping",
                notification_id,
            )
            return FanoutResult(
                notification_id=notification_id, status="dispatching", skipped=True
            )

        if recipients:
            aggregate = await dispatch_to_recipients(
                recipients,
                seed,
                token_repository=self.token_repository,
                gateway=self.gateway,
                concurrency_limit=self.concurrency_limit,
                recipient_timeout=self.recipient_timeout,
                deadline=deadline,
            )
        else:
            aggregate = AggregateResult()

        status = derive_status(aggregate, len(recipients))
        error_summary = build_error_summary(aggregate, status)

        await persister.commit(notification_id, status, error_summary)

        logger.info(
            "Final status for %s: %s (sent=%d, errors=%d, recipients=%d)",
            notification_id, status, aggregate.total_sent, aggregate.total_errors,
            aggregate.recipients_contacted,
        )

        return FanoutResult(
            notification_id=notification_id,
            status=status,
            sent=aggregate.total_sent,
            errors=aggregate.total_errors,
            recipients=aggregate.recipients_contacted,
            error_summary=error_summary,
            error_counts=aggregate.error_counts,
        )
