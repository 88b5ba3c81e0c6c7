"""
Dispatch Batcher — Fans one notification out to every recipient.

Each recipient is one asyncio task. A semaphore caps how many are in
flight at once (PUSH_CONCURRENCY_LIMIT), so a large channel neither
floods the gateway nor crawls through recipients one by one.

Per recipient:
1. Look up push tokens (lookup failure or timeout = one error, keep going)
2. Skip recipients without tokens (not an error)
3. Send one gateway request carrying all of the recipient's tokens,
   bounded by PUSH_RECIPIENT_TIMEOUT_SECONDS (timeout = transport failure)
4. Hand the RecipientOutcome to the aggregator queue

The caller gets the folded AggregateResult only after every recipient
task has settled.
"""

import asyncio
import logging
from typing import Any, Optional

from timely_push.core import config
from timely_push.models.delivery import (
    PayloadSeed,
    RecipientIdentity,
    RecipientOutcome,
)
from timely_push.services.aggregation import (
    DEADLINE_EXCEEDED,
    TIMEOUT,
    UNEXPECTED_ERROR,
    AggregateResult,
    OutcomeAggregator,
    delivered,
    failed_before_send,
    skipped,
    transport_failed,
)
from timely_push.services.expo import GatewayReceiptError, GatewayTransportError
from timely_push.services.payloads import build_push_payload
from timely_push.services.tokens import TokenLookupError

logger = logging.getLogger(__name__)


async def dispatch_recipient(
    recipient: RecipientIdentity,
    seed: PayloadSeed,
    *,
    token_repository: Any,
    gateway: Any,
    timeout: float,
) -> RecipientOutcome:
    """
    Deliver the notification to one recipient and report what happened.

    Never raises for delivery problems; every failure class is turned
    into error counts on the returned RecipientOutcome.
    """
    key = recipient.key

    try:
        tokens = await asyncio.wait_for(token_repository.tokens_for(recipient), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Token lookup for %s timed out after %.1fs", recipient.email, timeout
        )
        return failed_before_send(key)
    except TokenLookupError as exc:
        logger.warning("Error fetching tokens for %s: %s", recipient.email, exc.reason)
        return failed_before_send(key)

    if not tokens:
        return skipped(key)

    payload = build_push_payload(seed, tokens)

    try:
        outcomes = await asyncio.wait_for(gateway.send(payload), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Push to %s timed out after %.1fs (%d tokens)",
            recipient.email, timeout, len(tokens),
        )
        return transport_failed(key, TIMEOUT)
    except GatewayTransportError as exc:
        logger.warning("Push to %s failed: %s", recipient.email, exc)
        return transport_failed(key, exc.error_code)

    for outcome in outcomes:
        if not outcome.success:
            logger.warning("%s", GatewayReceiptError.from_outcome(outcome))

    return delivered(key, outcomes)


async def dispatch_to_recipients(
    recipients: list[RecipientIdentity],
    seed: PayloadSeed,
    *,
    token_repository: Any,
    gateway: Any,
    concurrency_limit: Optional[int] = None,
    recipient_timeout: Optional[float] = None,
    deadline: Optional[float] = None,
) -> AggregateResult:
    """
    Dispatch to all recipients with bounded concurrency and fold the results.

    Args:
        recipients: Distinct recipients (sender already excluded).
        seed: Payload seed shared by every recipient.
        token_repository: Object with `async tokens_for(recipient)`.
        gateway: Object with `async send(payload) -> list[DeliveryOutcome]`.
        concurrency_limit: Max recipients in flight (default from config).
        recipient_timeout: Timeout in seconds for the token lookup and for the
            gateway call, each (default from config).
        deadline: Optional overall budget in seconds. Recipients still running
            when it expires are cancelled and counted as one error each;
            results already produced are kept.

    Returns:
        AggregateResult across every recipient.
    """
    limit, timeout = config.validate_push_config(concurrency_limit, recipient_timeout)

    semaphore = asyncio.Semaphore(limit)
    aggregator = OutcomeAggregator()
    aggregator_task = asyncio.create_task(aggregator.run())
    submitted: set[str] = set()

    async def _worker(recipient: RecipientIdentity) -> None:
        async with semaphore:
            try:
                outcome = await dispatch_recipient(
                    recipient,
                    seed,
                    token_repository=token_repository,
                    gateway=gateway,
                    timeout=timeout,
                )
            except Exception:
                logger.exception("Error processing recipient %s", recipient.email)
                outcome = RecipientOutcome(
                    recipient_key=recipient.key,
                    errors=1,
                    error_codes=(UNEXPECTED_ERROR,),
                )
        await aggregator.submit(outcome)
        submitted.add(recipient.key)

    tasks = {asyncio.create_task(_worker(r)): r for r in recipients}

    try:
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=deadline)

            if pending:
                logger.warning(
                    "Deadline of %.1fs reached with %d of %d recipients unfinished",
                    deadline, len(pending), len(tasks),
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

            for recipient in tasks.values():
                if recipient.key not in submitted:
                    await aggregator.submit(
                        failed_before_send(recipient.key, DEADLINE_EXCEEDED)
                    )
    finally:
        await aggregator.close()

    result = await aggregator_task

    logger.info(
        "Dispatch complete: %d recipients, %d contacted, sent=%d, errors=%d",
        len(tasks), result.recipients_contacted, result.total_sent, result.total_errors,
    )
    return result
