"""
Notification API Routes: in-app notifications, preferences and live stream.

POST /notifications is the only client-originated way to create a
notification, so it is rate limited per caller. Server-side triggers go
through the NotificationDispatcher and are not limited.
"""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from ..core import (
    CurrentUserDep,
    InvalidArgument,
    SessionDep,
    get_notification_rate_limiter,
    get_session_context,
    get_settings,
)
from ..models import NotificationType
from ..schemas import (
    NotificationResponse,
    PreferencesResponse,
    UnreadCountResponse,
    UpdatePreferencesRequest,
    create_notification_adapter,
)
from ..schemas.base import DelphiBaseModel
from ..services.notifications import NotificationService
from ..services.snapshots import watch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

STREAM_LIMIT = 20


class CreatedResponse(DelphiBaseModel):
    id: str


class MarkAllReadResponse(DelphiBaseModel):
    updated: int


def get_notification_service(session: SessionDep) -> NotificationService:
    return NotificationService(session)


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]


# =============================================================================
# CREATE
# =============================================================================


@router.post(
    "",
    response_model=CreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a notification",
    description="""
    Create an in-app notification for a user.

    Checks run in this order:
    1. Authentication (401)
    2. Per-user rate limit, 10 per minute by default (429)
    3. Payload validation: ``topicId`` for topic events, ``panelId`` for invitations (400)
    """,
)
async def create_notification(
    request: Request,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    get_notification_rate_limiter().check(current_user.id)

    try:
        body: Any = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidArgument("Request body must be valid JSON") from e

    try:
        payload = create_notification_adapter.validate_python(body)
    except ValidationError as e:
        raise InvalidArgument(
            "Invalid notification payload",
            details=[
                {
                    "field": ".".join(str(p) for p in err["loc"]) or None,
                    "message": err["msg"],
                    "code": err["type"],
                }
                for err in e.errors()
            ],
        ) from e

    notification = await service.create(
        user_id=payload.user_id,
        notification_type=NotificationType(payload.type),
        title=payload.title,
        message=payload.message,
        data=payload.data.model_dump(by_alias=True),
    )
    return CreatedResponse(id=notification.id)


# =============================================================================
# READ & MARK
# =============================================================================


@router.get("", response_model=list[NotificationResponse], summary="List my notifications")
async def list_notifications(
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    unread_only: Annotated[bool, Query(alias="unreadOnly")] = False,
):
    return await service.list_for_user(current_user.id, limit=limit, unread_only=unread_only)


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Count unread notifications")
async def unread_count(current_user: CurrentUserDep, service: NotificationServiceDep):
    return UnreadCountResponse(count=await service.unread_count(current_user.id))


@router.post("/read-all", response_model=MarkAllReadResponse, summary="Mark all as read")
async def mark_all_as_read(current_user: CurrentUserDep, service: NotificationServiceDep):
    return MarkAllReadResponse(updated=await service.mark_all_as_read(current_user.id))


# =============================================================================
# PREFERENCES
# =============================================================================


@router.get("/preferences", response_model=PreferencesResponse, summary="Get my preferences")
async def get_preferences(current_user: CurrentUserDep, service: NotificationServiceDep):
    return await service.get_preferences(current_user.id)


@router.put("/preferences", response_model=PreferencesResponse, summary="Update my preferences")
async def update_preferences(
    request: UpdatePreferencesRequest,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    changes = {k: v for k, v in request.model_dump(exclude_unset=True).items() if v is not None}
    return await service.update_preferences(current_user.id, changes)


# =============================================================================
# LIVE STREAM
# =============================================================================


async def _snapshot(user_id: str) -> dict[str, Any]:
    async with get_session_context() as session:
        service = NotificationService(session)
        notifications = await service.list_for_user(user_id, limit=STREAM_LIMIT)
        return {
            "notifications": [
                NotificationResponse.model_validate(n).model_dump(mode="json", by_alias=True)
                for n in notifications
            ],
            "unreadCount": await service.unread_count(user_id),
        }


@router.get("/stream", summary="Live notifications (Server-Sent Events)")
async def stream_notifications(current_user: CurrentUserDep):
    """Push the latest notifications and unread count whenever they change."""
    user_id = current_user.id
    interval = get_settings().snapshot_poll_seconds

    async def events():
        async for snapshot in watch(lambda: _snapshot(user_id), interval=interval):
            yield f"event: snapshot\ndata: {json.dumps(snapshot)}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse, summary="Mark as read")
async def mark_as_read(
    notification_id: str,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    return await service.mark_as_read(notification_id, current_user.id)
