"""
Delivery State — Pydantic models that flow through the push fan-out pipeline.

1. PushScope / PayloadSeed — what was triggered and by whom
2. RecipientIdentity (User | Guest) — who should be notified
3. DeliveryToken — where to deliver (opaque Expo push tokens)
4. DeliveryOutcome — per-token gateway receipt
5. RecipientOutcome — per-recipient partial result fed to the aggregator
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ======================================================================
# Notification status lifecycle
# ======================================================================

NotificationStatus = Literal[
    "pending",
    "dispatching",
    "sent",
    "partial_failure",
    "failed",
    "no_recipients",
]

TERMINAL_STATUSES: frozenset[str] = frozenset(
    {"sent", "partial_failure", "failed", "no_recipients"}
)

# pending -> dispatching -> one terminal state, never backwards
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"dispatching"}),
    "dispatching": TERMINAL_STATUSES,
}


def can_transition(current: str, new: str) -> bool:
    """Whether a notification record may move from `current` to `new`."""
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


# ======================================================================
# Trigger scope and payload seed
# ======================================================================

ScopeKind = Literal["channel", "guest"]
TriggerKind = Literal["chat_message", "guest_chat", "itinerary_module"]


class PushScope(BaseModel):
    """
    The recipient population of a trigger.

    `channel` resolves every active participant of a chat channel.
    `guest` targets one guest; `guest_email` short-circuits the lookup
    when the caller already knows the address.
    """

    model_config = ConfigDict(frozen=True)

    kind: ScopeKind
    scope_id: str
    guest_email: Optional[str] = None


class PayloadSeed(BaseModel):
    """Event-specific fields used to build every recipient's gateway payload."""

    model_config = ConfigDict(frozen=True)

    notification_id: str
    trigger_kind: TriggerKind
    scope_id: str
    scope_label: str            # event name or caller title
    body_text: str
    sender_email: Optional[str] = None
    sender_display_name: Optional[str] = None
    message_id: Optional[str] = None
    module_id: Optional[str] = None
    badge: Optional[int] = None
    correlation_data: dict[str, Any] = Field(default_factory=dict)


# ======================================================================
# Recipients
# ======================================================================

def normalize_email(email: str) -> str:
    return email.strip().lower()


class _Identity(BaseModel):
    """
    Shared projection for both identity variants.

    Two identities are the same recipient when their emails match,
    whether they came from the users table or the guests table.
    """

    email: str
    display_name: Optional[str] = None

    @property
    def key(self) -> str:
        return normalize_email(self.email)

    @property
    def label(self) -> str:
        return self.display_name or self.email

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _Identity):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


class User(_Identity):
    """A staff member (row in `users`)."""

    kind: Literal["user"] = "user"


class Guest(_Identity):
    """An event guest (row in `guests`)."""

    kind: Literal["guest"] = "guest"


RecipientIdentity = Union[User, Guest]


# ======================================================================
# Tokens and outcomes
# ======================================================================

class DeliveryToken(BaseModel):
    """An opaque Expo push token registered by one of the owner's devices."""

    model_config = ConfigDict(frozen=True)

    owner: Union[User, Guest] = Field(discriminator="kind")
    token: str


class DeliveryOutcome(BaseModel):
    """The gateway's receipt for one token."""

    model_config = ConfigDict(frozen=True)

    token: str
    success: bool
    error_code: Optional[str] = None
    message: Optional[str] = None


class RecipientOutcome(BaseModel):
    """
    Partial result for one recipient, produced by exactly one dispatch task.

    `contacted` is True when a gateway call was issued for the recipient,
    whether or not it succeeded. `error_codes` has one entry per counted error.
    """

    model_config = ConfigDict(frozen=True)

    recipient_key: str
    sent: int = 0
    errors: int = 0
    contacted: bool = False
    error_codes: tuple[str, ...] = ()
