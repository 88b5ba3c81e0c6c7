"""
Outcome Aggregator — Folds per-recipient results into one delivery verdict.

Recipient tasks finish in any order, so the fold is a plain counter
merge: commutative and associative, giving identical totals for every
completion order. Tasks never touch shared counters; they hand immutable
RecipientOutcome objects to a queue that a single aggregator task drains.

Status derivation (after every recipient has settled):

    no recipients resolved               -> no_recipients
    nothing sent, nothing failed         -> no_recipients  (nobody had a token)
    errors == 0 and sent > 0             -> sent
    errors > 0 and sent > 0              -> partial_failure
    errors > 0 and sent == 0             -> failed
"""

import asyncio
import logging
from collections import Counter
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from timely_push.models.delivery import DeliveryOutcome, RecipientOutcome

logger = logging.getLogger(__name__)

TOKEN_LOOKUP_FAILED = "token_lookup_failed"
TIMEOUT = "timeout"
DEADLINE_EXCEEDED = "deadline_exceeded"
UNEXPECTED_ERROR = "unexpected_error"


class AggregateResult(BaseModel):
    """Totals across every recipient of one notification."""

    model_config = ConfigDict(frozen=True)

    total_sent: int = 0
    total_errors: int = 0
    recipients_contacted: int = 0
    error_counts: dict[str, int] = Field(default_factory=dict)

    def merge(self, other: "AggregateResult") -> "AggregateResult":
        counts = Counter(self.error_counts)
        counts.update(other.error_counts)
        return AggregateResult(
            total_sent=self.total_sent + other.total_sent,
            total_errors=self.total_errors + other.total_errors,
            recipients_contacted=self.recipients_contacted + other.recipients_contacted,
            error_counts=dict(counts),
        )

    @classmethod
    def from_outcome(cls, outcome: RecipientOutcome) -> "AggregateResult":
        return cls(
            total_sent=outcome.sent,
            total_errors=outcome.errors,
            recipients_contacted=1 if outcome.contacted else 0,
            error_counts=dict(Counter(outcome.error_codes)),
        )


def fold_outcomes(outcomes: Iterable[RecipientOutcome]) -> AggregateResult:
    result = AggregateResult()
    for outcome in outcomes:
        result = result.merge(AggregateResult.from_outcome(outcome))
    return result


# ===================================================================
# Per-recipient outcome constructors
# ===================================================================

def delivered(recipient_key: str, outcomes: list[DeliveryOutcome]) -> RecipientOutcome:
    """Receipts came back: one sent per ok receipt, one error per rejected one."""
    failures = [o for o in outcomes if not o.success]
    return RecipientOutcome(
        recipient_key=recipient_key,
        sent=len(outcomes) - len(failures),
        errors=len(failures),
        contacted=True,
        error_codes=tuple(o.error_code or "receipt_error" for o in failures),
    )


def transport_failed(recipient_key: str, error_code: str) -> RecipientOutcome:
    """The whole gateway call failed: one error for the recipient, not per token."""
    return RecipientOutcome(
        recipient_key=recipient_key,
        errors=1,
        contacted=True,
        error_codes=(error_code,),
    )


def failed_before_send(recipient_key: str, error_code: str = TOKEN_LOOKUP_FAILED) -> RecipientOutcome:
    """No gateway call was made; the recipient still counts one error."""
    return RecipientOutcome(
        recipient_key=recipient_key,
        errors=1,
        error_codes=(error_code,),
    )


def skipped(recipient_key: str) -> RecipientOutcome:
    """Recipient has no registered tokens. Contributes nothing."""
    return RecipientOutcome(recipient_key=recipient_key)


# ===================================================================
# Status derivation
# ===================================================================

def derive_status(result: AggregateResult, recipients_resolved: int) -> str:
    if recipients_resolved == 0:
        return "no_recipients"
    if result.total_sent == 0 and result.total_errors == 0:
        return "no_recipients"
    if result.total_errors == 0:
        return "sent"
    if result.total_sent > 0:
        return "partial_failure"
    return "failed"


def build_error_summary(result: AggregateResult, status: str) -> Optional[str]:
    """
    Human-readable error text for partial_failure / failed, else None.

    Error codes are listed alphabetically so the text does not depend
    on the order recipients finished in.
    """
    if status == "partial_failure":
        prefix = "Partial delivery"
    elif status == "failed":
        prefix = "Delivery failed"
    else:
        return None

    summary = f"{prefix}: {result.total_sent} sent, {result.total_errors} errors"
    if result.error_counts:
        codes = ", ".join(
            f"{code} x{count}" for code, count in sorted(result.error_counts.items())
        )
        summary = f"{summary} ({codes})"
    return summary


# ===================================================================
# Queue-fed aggregator task
# ===================================================================

_DONE = object()


class OutcomeAggregator:
    """
    Owns the running totals for one fan-out.

    Recipient tasks call `submit`; a single task runs `run()` and is the
    only code that ever reads or replaces the totals.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._result = AggregateResult()
        self._received = 0

    async def submit(self, outcome: RecipientOutcome) -> None:
        await self._queue.put(outcome)

    async def close(self) -> None:
        await self._queue.put(_DONE)

    @property
    def received(self) -> int:
        return self._received

    async def run(self) -> AggregateResult:
        while True:
            item = await self._queue.get()
            if item is _DONE:
                break
            self._result = self._result.merge(AggregateResult.from_outcome(item))
            self._received += 1

        logger.debug(
            "Aggregated %d recipient outcomes: sent=%d errors=%d",
            self._received, self._result.total_sent, self._result.total_errors,
        )
        return self._result
