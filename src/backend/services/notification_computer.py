"""
Notification computer - unread counts and recent-activity flags.

For a viewer and a request:
    last_ack            = acknowledgment mark, or request.created_at
    unread_count        = visible activities with created_at > last_ack
    has_recent_activity = any of those with created_at >= now - recency window

Visibility filtering happens before counting, so requesters are never
notified about internal notes or escalations.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import critical_database_operation
from crud.acknowledgment_crud import AcknowledgmentCRUD
from crud.activity_crud import RequestActivityCRUD
from crud.service_request_crud import ServiceRequestCRUD
from db.models import RequestActivity, ServiceRequest, User, utc_now
from services.acknowledgment_service import AcknowledgmentService
from services.visibility import policy_for

logger = logging.getLogger(__name__)


@dataclass
class UnreadSummary:
    request_id: UUID
    unread_count: int
    has_recent_activity: bool
    last_activity_at: Optional[datetime]
    last_ack_at: datetime


def recency_window() -> timedelta:
    return timedelta(minutes=settings.lifecycle.recency_window_minutes)


class NotificationComputer:
    """Derives unread state from the activity log and acknowledgment marks."""

    @staticmethod
    def compute_unread(
        viewer: User,
        request: ServiceRequest,
        activities: Sequence[RequestActivity],
        last_ack: Optional[datetime],
        now: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> UnreadSummary:
        """
        Compute the unread summary from already-loaded data.

        Args:
            viewer: User the summary is for
            request: The request
            activities: The request's activities (unfiltered)
            last_ack: Viewer's acknowledgment mark, None if never acknowledged
            now: Reference time (defaults to the current UTC time)
            window: Recency window (defaults to the configured one)
        """
        visible = policy_for(viewer).project(request, activities, viewer).activities
        threshold = last_ack or request.created_at
        recent_since = (now or utc_now()) - (window if window is not None else recency_window())

        unread = [a for a in visible if a.created_at > threshold]
        return UnreadSummary(
            request_id=request.id,
            unread_count=len(unread),
            has_recent_activity=any(a.created_at >= recent_since for a in unread),
            last_activity_at=max((a.created_at for a in visible), default=None),
            last_ack_at=threshold,
        )

    @staticmethod
    @critical_database_operation("get_unread_summary")
    async def get_unread_summary(
        db: AsyncSession, viewer: User, request_id: UUID
    ) -> UnreadSummary:
        """Unread summary of one request (NOT_FOUND outside the viewer's scope)."""
        request = policy_for(viewer).ensure_visible(
            viewer, await ServiceRequestCRUD.find_by_id(db, request_id)
        )
        activities = await RequestActivityCRUD.find_for_request(db, request_id)
        last_ack = await AcknowledgmentService.get_last_ack(db, viewer, request)
        return NotificationComputer.compute_unread(viewer, request, activities, last_ack)

    @staticmethod
    @critical_database_operation("compute_unread_batch")
    async def compute_batch(
        db: AsyncSession, viewer: User, requests: List[ServiceRequest]
    ) -> Dict[UUID, UnreadSummary]:
        """
        Unread summaries for a page of requests with one activity query and
        one acknowledgment query.
        """
        if not requests:
            return {}

        request_ids = [r.id for r in requests]
        activities = await RequestActivityCRUD.find_for_requests(db, request_ids)
        last_acks = await AcknowledgmentCRUD.get_last_acks(db, viewer.id, request_ids)

        by_request: Dict[UUID, List[RequestActivity]] = defaultdict(list)
        for activity in activities:
            by_request[activity.request_id].append(activity)

        now = utc_now()
        window = recency_window()
        return {
            r.id: NotificationComputer.compute_unread(
                viewer, r, by_request[r.id], last_acks.get(r.id), now=now, window=window
            )
            for r in requests
        }
