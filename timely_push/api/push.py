"""
Push API — Trigger endpoints for the notification fan-out.

Each endpoint turns its payload into a recipient scope plus a payload
seed and runs the fan-out pipeline. The inline response summarises the
delivery; the notification record's status is the durable result.

Error mapping:
    404: notification record not found
    500: recipients could not be resolved, or the status write failed
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from timely_push.core.security import verify_trigger_token
from timely_push.models.delivery import PayloadSeed, PushScope
from timely_push.models.notifications import (
    ChatPushRequest,
    GuestChatPushRequest,
    ModulePushRequest,
    PushDispatchResponse,
    PushTriggerRequest,
)
from timely_push.services.fanout import FanoutResult, PushFanout
from timely_push.services.recipients import ResolutionError
from timely_push.services.status import NotificationNotFoundError, PersistenceError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/push",
    tags=["push"],
    dependencies=[Depends(verify_trigger_token)],
)

_fanout: PushFanout | None = None


def get_fanout() -> PushFanout:
    """FastAPI dependency returning the shared pipeline (overridable in tests)."""
    global _fanout
    if _fanout is None:
        _fanout = PushFanout()
    return _fanout


STATUS_MESSAGES = {
    "sent": "Push notification delivered to all devices.",
    "partial_failure": "Push notification partially delivered.",
    "failed": "Push notification could not be delivered.",
    "no_recipients": "No recipients with registered devices.",
}


def _to_response(result: FanoutResult) -> PushDispatchResponse:
    if result.skipped:
        message = f"Notification already {result.status}."
    else:
        message = STATUS_MESSAGES.get(result.status, "")
    return PushDispatchResponse(
        notification_id=result.notification_id,
        status=result.status,
        sent=result.sent,
        errors=result.errors,
        recipients=result.recipients,
        skipped=result.skipped,
        message=message,
        error_summary=result.error_summary,
    )


async def _run(fanout: PushFanout, scope: PushScope, seed: PayloadSeed) -> PushDispatchResponse:
    try:
        result = await fanout.run(scope, seed)
    except NotificationNotFoundError as exc:
        logger.warning("%s", exc)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found.",
        )
    except ResolutionError as exc:
        logger.error("Recipient resolution failed for %s: %s", seed.notification_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "resolution_failed", "message": str(exc)},
        )
    except PersistenceError as exc:
        logger.error("Status persistence failed for %s: %s", seed.notification_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "persistence_failed", "message": str(exc)},
        )

    return _to_response(result)


# ===================================================================
# Payload -> scope / seed
# ===================================================================

def trigger_to_pipeline(payload: PushTriggerRequest) -> tuple[PushScope, PayloadSeed]:
    scope = PushScope(
        kind=payload.scope_kind,
        scope_id=payload.scope_id,
        guest_email=payload.recipient_email if payload.scope_kind == "guest" else None,
    )
    seed = PayloadSeed(
        notification_id=payload.notification_id,
        trigger_kind=payload.trigger_kind,
        scope_id=payload.scope_id,
        scope_label=payload.title,
        body_text=payload.body_text,
        sender_email=payload.sender_email,
        sender_display_name=payload.sender_display_name,
        message_id=payload.message_id,
        module_id=payload.module_id,
        badge=payload.badge,
        correlation_data=payload.correlation_data,
    )
    return scope, seed


def chat_to_pipeline(payload: ChatPushRequest) -> tuple[PushScope, PayloadSeed]:
    scope = PushScope(kind="channel", scope_id=payload.channel_id)
    seed = PayloadSeed(
        notification_id=payload.notification_id,
        trigger_kind="chat_message",
        scope_id=payload.channel_id,
        scope_label=payload.event_name or "New message",
        body_text=payload.message_text,
        sender_email=payload.sender_email,
        sender_display_name=payload.sender_name or None,
        message_id=payload.message_id,
        correlation_data={
            "channelId": payload.channel_id,
            "eventName": payload.event_name,
            "senderName": payload.sender_name,
        },
    )
    return scope, seed


def guest_chat_to_pipeline(payload: GuestChatPushRequest) -> tuple[PushScope, PayloadSeed]:
    # The caller already composed the title for guest chat
    scope = PushScope(
        kind="guest",
        scope_id=payload.recipient_email,
        guest_email=payload.recipient_email,
    )
    correlation = {"eventId": payload.event_id, "senderName": payload.sender_name}
    correlation = {k: v for k, v in correlation.items() if v is not None}
    correlation.update(payload.data)
    seed = PayloadSeed(
        notification_id=payload.notification_id,
        trigger_kind="guest_chat",
        scope_id=payload.recipient_email,
        scope_label=payload.title,
        body_text=payload.body,
        sender_email=payload.sender_email,
        message_id=payload.message_id,
        badge=payload.badge,
        correlation_data=correlation,
    )
    return scope, seed


def module_to_pipeline(payload: ModulePushRequest) -> tuple[PushScope, PayloadSeed]:
    scope = PushScope(
        kind="guest",
        scope_id=payload.guest_email,
        guest_email=payload.guest_email,
    )
    seed = PayloadSeed(
        notification_id=payload.notification_id,
        trigger_kind="itinerary_module",
        scope_id=payload.guest_email,
        scope_label=payload.title,
        body_text=payload.body,
        module_id=payload.module_id,
        badge=payload.badge,
        correlation_data=dict(payload.data),
    )
    return scope, seed


# ===================================================================
# Routes
# ===================================================================

@router.post(
    "/dispatch",
    status_code=status.HTTP_200_OK,
    response_model=PushDispatchResponse,
)
async def dispatch_push(
    payload: PushTriggerRequest,
    fanout: PushFanout = Depends(get_fanout),
) -> PushDispatchResponse:
    """Fan a notification out to a channel or a single guest."""
    scope, seed = trigger_to_pipeline(payload)
    return await _run(fanout, scope, seed)


@router.post(
    "/chat",
    status_code=status.HTTP_200_OK,
    response_model=PushDispatchResponse,
)
async def chat_push(
    payload: ChatPushRequest,
    fanout: PushFanout = Depends(get_fanout),
) -> PushDispatchResponse:
    """
    Notify every other participant of a chat channel about a new message.

    Title: "[Event name] - [Sender name]". Body: message text, truncated.
    """
    scope, seed = chat_to_pipeline(payload)
    return await _run(fanout, scope, seed)


@router.post(
    "/guest-chat",
    status_code=status.HTTP_200_OK,
    response_model=PushDispatchResponse,
)
async def guest_chat_push(
    payload: GuestChatPushRequest,
    fanout: PushFanout = Depends(get_fanout),
) -> PushDispatchResponse:
    """Notify one guest about a staff chat message."""
    scope, seed = guest_chat_to_pipeline(payload)
    return await _run(fanout, scope, seed)


@router.post(
    "/module",
    status_code=status.HTTP_200_OK,
    response_model=PushDispatchResponse,
)
async def module_push(
    payload: ModulePushRequest,
    fanout: PushFanout = Depends(get_fanout),
) -> PushDispatchResponse:
    """Notify one guest about a scheduled itinerary module."""
    scope, seed = module_to_pipeline(payload)
    return await _run(fanout, scope, seed)
