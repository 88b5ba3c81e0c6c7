"""
Notification Models — Pydantic schemas for push trigger payloads.

Inbound triggers are sent by the Timely apps and database webhooks with
camelCase keys; the models accept either camelCase or snake_case.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _TriggerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ===================================================================
# Generic trigger
# ===================================================================

class PushTriggerRequest(_TriggerModel):
    """
    Generic fan-out trigger for POST /api/v1/push/dispatch.

    `scopeKind` selects the recipient population: every participant of a
    chat channel, or a single guest.
    """
    notification_id: str = Field(
        ..., alias="notificationId", min_length=1,
        description="Caller-supplied id of the notification record.",
    )
    trigger_kind: Literal["chat_message", "guest_chat", "itinerary_module"] = Field(
        default="chat_message", alias="triggerKind",
        description="Which notification table holds the record.",
    )
    scope_kind: Literal["channel", "guest"] = Field(
        ..., alias="scopeKind",
        description="'channel' or 'guest'.",
    )
    scope_id: str = Field(
        ..., alias="scopeId", min_length=1,
        description="Channel id or guest id.",
    )
    recipient_email: Optional[str] = Field(
        default=None, alias="recipientEmail",
        description="Guest email, when already known (skips the guest lookup).",
    )
    sender_email: Optional[str] = Field(
        default=None, alias="senderEmail",
        description="Email of the originating actor; never notified.",
    )
    sender_display_name: Optional[str] = Field(
        default=None, alias="senderDisplayName",
        description="Shown after the scope label in the title.",
    )
    title: str = Field(
        ..., min_length=1,
        description="Scope label (event name) used as the title prefix.",
    )
    body_text: str = Field(
        ..., alias="bodyText", min_length=1,
        description="Notification body; truncated to 100 characters.",
    )
    message_id: Optional[str] = Field(default=None, alias="messageId")
    module_id: Optional[str] = Field(default=None, alias="moduleId")
    badge: Optional[int] = Field(default=None, ge=0)
    correlation_data: dict[str, Any] = Field(
        default_factory=dict, alias="correlationData",
        description=(
            "Extra fields copied into the push `data` block. Core keys "
            "(type, notificationId, scopeId, senderEmail, messageId, moduleId) "
            "are set by the service and cannot be overridden here."
        ),
    )


# ===================================================================
# Trigger-specific payloads (shapes used by the Timely apps)
# ===================================================================

class ChatPushRequest(_TriggerModel):
    """New message in an event chat channel (POST /api/v1/push/chat)."""
    notification_id: str = Field(..., alias="notificationId", min_length=1)
    message_id: str = Field(..., alias="messageId", min_length=1)
    channel_id: str = Field(..., alias="channelId", min_length=1)
    sender_email: str = Field(..., alias="senderEmail", min_length=1)
    sender_name: str = Field(default="", alias="senderName")
    message_text: str = Field(..., alias="messageText", min_length=1)
    event_name: str = Field(default="", alias="eventName")


class GuestChatPushRequest(_TriggerModel):
    """Staff-to-guest chat message (POST /api/v1/push/guest-chat)."""
    notification_id: str = Field(..., alias="notificationId", min_length=1)
    recipient_email: str = Field(..., alias="recipientEmail", min_length=1)
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    message_id: Optional[str] = Field(default=None, alias="messageId")
    event_id: Optional[str] = Field(default=None, alias="eventId")
    sender_email: Optional[str] = Field(default=None, alias="senderEmail")
    sender_name: Optional[str] = Field(default=None, alias="senderName")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "Extra fields copied into the push `data` block. Core keys "
            "(type, notificationId, scopeId, senderEmail, messageId, moduleId) "
            "are set by the service and cannot be overridden here."
        ),
    )
    badge: Optional[int] = Field(default=None, ge=0)


class ModulePushRequest(_TriggerModel):
    """Scheduled itinerary module sent to a guest (POST /api/v1/push/module)."""
    notification_id: str = Field(..., alias="notificationId", min_length=1)
    guest_email: str = Field(..., alias="guestEmail", min_length=1)
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    module_id: Optional[str] = Field(default=None, alias="moduleId")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "Extra fields copied into the push `data` block. Core keys "
            "(type, notificationId, scopeId, senderEmail, messageId, moduleId) "
            "are set by the service and cannot be overridden here."
        ),
    )
    badge: Optional[int] = Field(default=None, ge=0)


# ===================================================================
# Response
# ===================================================================

class PushDispatchResponse(_TriggerModel):
    """Inline summary of a fan-out. The durable result is the notification record."""
    success: bool = Field(default=True)
    notification_id: str = Field(..., alias="notificationId")
    status: str = Field(
        ...,
        description=(
            "sent, partial_failure, failed or no_recipients "
            "(or the stored status when skipped)."
        ),
    )
    sent: int = Field(default=0, description="Tokens accepted by the gateway.")
    errors: int = Field(default=0, description="Counted delivery errors.")
    recipients: int = Field(default=0, description="Recipients a push was attempted for.")
    skipped: bool = Field(
        default=False,
        description="True when the notification had already been processed.",
    )
    message: str = Field(default="")
    error_summary: Optional[str] = Field(default=None, alias="errorSummary")
