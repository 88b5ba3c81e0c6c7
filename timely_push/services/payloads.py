"""
Payload Builder — Builds Expo push payloads from a trigger's payload seed.

Title format: "[Scope label] - [Sender name]" (scope label alone when the
trigger has no sender, e.g. an itinerary module).
Body: the trigger text, cut to 100 characters plus "..." when longer.

The `data` block carries correlation ids so the mobile client can
deep-link on tap and drop duplicate deliveries of the same notification.

Everything here is pure: the same seed and tokens always produce the
same payload. No timestamps are embedded.
"""

from typing import Any

from timely_push.models.delivery import DeliveryToken, PayloadSeed

BODY_PREVIEW_LIMIT = 100
TRUNCATION_SUFFIX = "..."

DEFAULT_BADGE = 1
DEFAULT_SOUND = "default"
PUSH_PRIORITY = "high"

# Android notification channels registered by the mobile app
ANDROID_CHANNELS: dict[str, str] = {
    "chat_message": "chat-messages",
    "guest_chat": "guest-chat",
}


def truncate_body(text: str, limit: int = BODY_PREVIEW_LIMIT) -> str:
    """Return text unchanged if it fits, else the first `limit` chars + '...'."""
    if len(text) > limit:
        return text[:limit] + TRUNCATION_SUFFIX
    return text


def build_title(seed: PayloadSeed) -> str:
    if seed.sender_display_name:
        return f"{seed.scope_label} - {seed.sender_display_name}"
    return seed.scope_label


def build_data(seed: PayloadSeed) -> dict[str, Any]:
    """
    Correlation fields for the client.

    Caller-supplied correlation data goes in first; the core ids are
    written last so a trigger cannot overwrite them.
    """
    core = {
        "type": seed.trigger_kind,
        "notificationId": seed.notification_id,
        "scopeId": seed.scope_id,
        "senderEmail": seed.sender_email,
        "messageId": seed.message_id,
        "moduleId": seed.module_id,
    }
    data = dict(seed.correlation_data)
    data.update({key: value for key, value in core.items() if value is not None})
    return data


def build_push_payload(seed: PayloadSeed, tokens: list[DeliveryToken]) -> dict:
    """
    Build the Expo push payload for one recipient.

    Args:
        seed: Event fields shared by every recipient of the trigger.
        tokens: All of the recipient's tokens, sent in a single request.

    Returns:
        dict: Expo-formatted payload ready for JSON serialization.
    """
    payload = {
        "to": [t.token for t in tokens],
        "title": build_title(seed),
        "body": truncate_body(seed.body_text),
        "data": build_data(seed),
        "sound": DEFAULT_SOUND,
        "badge": seed.badge if seed.badge is not None else DEFAULT_BADGE,
        "priority": PUSH_PRIORITY,
    }

    channel = ANDROID_CHANNELS.get(seed.trigger_kind)
    if channel:
        payload["channelId"] = channel

    return payload
