"""
Client-side access to the request lifecycle API and unread-state polling.
"""
from .api_client import ApiError, RequestsApiClient
from .sync_scheduler import (
    SyncScheduler,
    ViewSnapshot,
    ViewState,
    ViewSync,
    detail_view_fetcher,
    list_view_fetcher,
)

__all__ = [
    "ApiError",
    "RequestsApiClient",
    "SyncScheduler",
    "ViewSnapshot",
    "ViewState",
    "ViewSync",
    "detail_view_fetcher",
    "list_view_fetcher",
]
