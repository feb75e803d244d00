"""
Activity Dispatcher - outbound notification hook for new activities.

Every committed activity is offered to the dispatcher, which posts a JSON
event to the configured webhook (email/push delivery lives behind it).

Key principles:
- Non-blocking: never fails the operation that produced the activity
- Idempotent: every event carries a unique event id
- Fire-and-forget: errors are logged and counted, not propagated
"""

import logging
import uuid
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx

from core.config import settings
from core.metrics import track_dispatch
from core.schema_base import serialize_datetime
from db.enums import ActivityType
from db.models import RequestActivity, ServiceRequest

logger = logging.getLogger(__name__)


class ActivityDispatcher:
    """HTTP webhook client for activity notifications."""

    _client: Optional[httpx.AsyncClient] = None

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        """Get or create the pooled async HTTP client."""
        if cls._client is None or cls._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if settings.notifications.api_key:
                headers["X-Api-Key"] = settings.notifications.api_key

            cls._client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.notifications.timeout_seconds),
                headers=headers,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            )
        return cls._client

    @classmethod
    async def close(cls):
        """Close pooled connections (call during shutdown)."""
        if cls._client is not None and not cls._client.is_closed:
            await cls._client.aclose()
        cls._client = None

    @staticmethod
    def recipients_for(request: ServiceRequest, activity: RequestActivity) -> List[UUID]:
        """
        Users to notify about an activity. The actor is never notified of
        their own action.

        - status_change: the requester
        - assignment: the new assignee
        - note: assignee, plus the requester when the note is external
        - escalation: the assignee
        """
        if activity.activity_type == ActivityType.STATUS_CHANGE:
            candidates = [request.created_by]
        elif activity.activity_type == ActivityType.ASSIGNMENT:
            candidates = [activity.assigned_to]
        elif activity.activity_type == ActivityType.NOTE:
            candidates = [request.assigned_to]
            if not activity.is_internal:
                candidates.append(request.created_by)
        else:
            candidates = [request.assigned_to]

        recipients: List[UUID] = []
        for user_id in candidates:
            if user_id is not None and user_id != activity.actor_id and user_id not in recipients:
                recipients.append(user_id)
        return recipients

    @staticmethod
    def build_event(
        request: ServiceRequest, activity: RequestActivity, recipients: List[UUID]
    ) -> Dict[str, Any]:
        activity_type = ActivityType(activity.activity_type)
        return {
            "eventId": str(uuid.uuid4()),
            "eventType": f"activity.{activity_type.value}",
            "requestId": str(request.id),
            "requestNumber": request.request_number,
            "activityId": activity.id,
            "actorId": str(activity.actor_id),
            "recipients": [str(r) for r in recipients],
            "status": getattr(request.status, "value", request.status),
            "newStatus": getattr(activity.new_status, "value", activity.new_status),
            "isInternal": activity.is_internal,
            "occurredAt": serialize_datetime(activity.created_at),
        }

    @classmethod
    async def dispatch(cls, request: ServiceRequest, activity: RequestActivity) -> bool:
        """
        Post the activity event to the webhook.

        Returns:
            True if the webhook accepted the event, False if dispatch was
            disabled, had no recipients, or failed
        """
        activity_type = ActivityType(activity.activity_type).value

        if not settings.notifications.enabled or not settings.notifications.webhook_url:
            logger.debug("Activity dispatch is disabled, skipping event")
            track_dispatch(activity_type, "skipped")
            return False

        recipients = cls.recipients_for(request, activity)
        if not recipients:
            track_dispatch(activity_type, "skipped")
            return False

        event = cls.build_event(request, activity, recipients)
        try:
            client = await cls.get_client()
            response = await client.post(settings.notifications.webhook_url, json=event)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                f"Failed to dispatch {event['eventType']} for {request.request_number}: {e}"
            )
            track_dispatch(activity_type, "failed")
            return False

        logger.debug(
            f"Dispatched {event['eventType']} for {request.request_number} "
            f"to {len(recipients)} recipient(s)"
        )
        track_dispatch(activity_type, "sent")
        return True
