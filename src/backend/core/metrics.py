"""
Prometheus metrics for the request lifecycle.

Usage:
    from core.metrics import track_transition

    track_transition(from_status="pending", to_status="in_progress")
"""

from prometheus_client import Counter, Histogram

# ==============================================================================
# Business Metrics - Request Lifecycle
# ==============================================================================

requests_created_total = Counter(
    'requests_created_total',
    'Total service requests created',
    ['request_type', 'urgency']
)

request_transitions_total = Counter(
    'request_transitions_total',
    'Total applied status transitions',
    ['from_status', 'to_status']
)

request_assignments_total = Counter(
    'request_assignments_total',
    'Total applied assignments',
    ['department', 'reassignment']
)

request_notes_total = Counter(
    'request_notes_total',
    'Total notes appended to requests',
    ['visibility']  # internal/external
)

request_escalations_total = Counter(
    'request_escalations_total',
    'Total request escalations',
    ['request_type']
)

request_resolution_time_seconds = Histogram(
    'request_resolution_time_seconds',
    'Time from request creation to completion',
    ['request_type'],
    buckets=(300, 900, 1800, 3600, 7200, 14400, 28800, 86400, 172800, float('inf'))  # 5min to 2 days
)

# ==============================================================================
# Rejections
# ==============================================================================

precondition_conflicts_total = Counter(
    'precondition_conflicts_total',
    'Writes rejected because the expected value no longer matched',
    ['operation']
)

rejected_writes_total = Counter(
    'rejected_writes_total',
    'Writes rejected before reaching the store',
    ['operation', 'reason']  # reason: error code
)

# ==============================================================================
# Outbound dispatch
# ==============================================================================

activity_dispatch_total = Counter(
    'activity_dispatch_total',
    'Activity events offered to the notification webhook',
    ['activity_type', 'status']  # status: sent/failed/skipped
)

# ==============================================================================
# Helper Functions
# ==============================================================================


def track_request_created(request_type: str, urgency: str):
    """Track request creation."""
    requests_created_total.labels(request_type=request_type, urgency=urgency).inc()


def track_transition(from_status: str, to_status: str):
    """Track an applied status transition."""
    request_transitions_total.labels(from_status=from_status, to_status=to_status).inc()


def track_assignment(department: str, reassignment: bool):
    request_assignments_total.labels(
        department=department,
        reassignment=str(reassignment).lower()
    ).inc()


def track_note(is_internal: bool):
    request_notes_total.labels(visibility="internal" if is_internal else "external").inc()


def track_escalation(request_type: str):
    request_escalations_total.labels(request_type=request_type).inc()


def track_resolution_time(request_type: str, seconds: float):
    """Track time to completion."""
    request_resolution_time_seconds.labels(request_type=request_type).observe(seconds)


def track_conflict(operation: str):
    precondition_conflicts_total.labels(operation=operation).inc()


def track_rejected_write(operation: str, reason: str):
    rejected_writes_total.labels(operation=operation, reason=reason).inc()


def track_dispatch(activity_type: str, status: str):
    activity_dispatch_total.labels(activity_type=activity_type, status=status).inc()
