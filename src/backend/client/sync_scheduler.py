"""
Sync scheduler - client-side polling of unread state for open views.

Each open view (a request list, a request detail) gets one cooperative poll
loop on the running event loop.

Strategy:
- A tick fires every `interval` seconds while the view is in the foreground
  and starts a refresh unless one is still in flight (that tick is skipped)
- Backgrounding or closing cancels the loop and any in-flight refresh
- Returning to the foreground restarts the loop with an immediate refresh
- Polling never acknowledges; only `acknowledge()` does, and any refresh
  issued before the latest acknowledgment is discarded on arrival

Example:
    scheduler = SyncScheduler(client)
    scheduler.open_view("inbox", list_view_fetcher(client, assigned_to_me=True))
    ...
    await scheduler.acknowledge(request_id)   # user opened the activity panel
    scheduler.set_foreground(False)           # app hidden: nothing is issued
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from core.config import settings
from core.exceptions import RequestDeskError

logger = logging.getLogger(__name__)


@dataclass
class UnreadInfo:
    unread_count: int = 0
    has_recent_activity: bool = False
    last_activity_at: Optional[str] = None


@dataclass
class ViewSnapshot:
    """What one refresh returned: per-request unread state plus the raw payload."""

    items: Dict[str, UnreadInfo]
    payload: Any = None


@dataclass
class ViewState:
    """Locally merged state of one view."""

    items: Dict[str, UnreadInfo] = field(default_factory=dict)
    payload: Any = None
    refreshed_at: Optional[float] = None
    last_error: Optional[Exception] = None

    def merge(self, snapshot: ViewSnapshot, at: float) -> None:
        """Adopt a refresh; requests missing from it have left the view."""
        self.items = dict(snapshot.items)
        self.payload = snapshot.payload
        self.refreshed_at = at
        self.last_error = None

    def clear_unread(self, request_id: str) -> None:
        info = self.items.get(request_id)
        if info is not None:
            info.unread_count = 0
            info.has_recent_activity = False

    @property
    def total_unread(self) -> int:
        return sum(info.unread_count for info in self.items.values())


Fetcher = Callable[[], Awaitable[ViewSnapshot]]


class ViewSync:
    """Single-flight poll loop for one view."""

    def __init__(
        self,
        name: str,
        fetch: Fetcher,
        interval: Optional[float] = None,
        on_update: Optional[Callable[["ViewSync"], Any]] = None,
    ):
        self.name = name
        self.fetch = fetch
        self.interval = interval if interval is not None else settings.sync.poll_interval_seconds
        self.on_update = on_update
        self.state = ViewState()

        self.foreground = False
        self.closed = False
        self.ack_generation = 0
        self.refreshes_issued = 0
        self.skipped_ticks = 0
        self.dropped_responses = 0

        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def start(self) -> None:
        """Bring the view to the foreground and poll immediately, then every interval."""
        if self.closed:
            raise RuntimeError(f"View {self.name} is closed")

        self.foreground = True
        if not self.running:
            self._loop_task = asyncio.create_task(self._run(), name=f"sync:{self.name}")

    def pause(self) -> None:
        """Move the view to the background: cancel the loop and any in-flight refresh."""
        self.foreground = False
        self._cancel()

    def close(self) -> None:
        self.closed = True
        self.pause()

    def _cancel(self) -> None:
        for task in (self._loop_task, self._in_flight):
            if task is not None and not task.done():
                task.cancel()
        self._loop_task = None
        self._in_flight = None

    async def _run(self) -> None:
        while self.foreground:
            self.tick()
            await asyncio.sleep(self.interval)

    def tick(self) -> Optional[asyncio.Task]:
        """
        Start one refresh.

        Returns:
            The refresh task, or None if the view is backgrounded or a
            refresh is already in flight
        """
        if not self.foreground or self.closed:
            return None

        if self.in_flight:
            self.skipped_ticks += 1
            logger.debug(f"Sync {self.name}: refresh still in flight, tick skipped")
            return None

        self.refreshes_issued += 1
        self._in_flight = asyncio.create_task(self._refresh(self.ack_generation))
        return self._in_flight

    async def _refresh(self, generation: int) -> bool:
        try:
            snapshot = await self.fetch()
        except (httpx.HTTPError, RequestDeskError) as e:
            self.state.last_error = e
            logger.warning(f"Sync {self.name}: refresh failed: {e}")
            return False
        except Exception as e:
            self.state.last_error = e
            logger.error(f"Sync {self.name}: unexpected refresh error - {e}", exc_info=True)
            return False

        if generation != self.ack_generation:
            self.dropped_responses += 1
            logger.debug(f"Sync {self.name}: dropped refresh issued before the last acknowledgment")
            return False

        self.state.merge(snapshot, time.monotonic())
        if self.on_update is not None:
            self.on_update(self)
        return True

    def mark_acknowledged(self, request_id: str) -> None:
        """Invalidate refreshes issued so far and clear the request's local unread state."""
        self.ack_generation += 1
        self.state.clear_unread(request_id)


class SyncScheduler:
    """Owns the poll loops of all open views and the acknowledgment action."""

    def __init__(self, client, interval: Optional[float] = None):
        self.client = client
        self.interval = interval
        self.views: Dict[str, ViewSync] = {}
        self.foreground = True

    def open_view(
        self,
        name: str,
        fetch: Fetcher,
        on_update: Optional[Callable[[ViewSync], Any]] = None,
    ) -> ViewSync:
        """Open (or reopen) a view; it starts polling if the app is in the foreground."""
        self.close_view(name)
        view = ViewSync(name, fetch, interval=self.interval, on_update=on_update)
        self.views[name] = view
        if self.foreground:
            view.start()
        return view

    def close_view(self, name: str) -> None:
        view = self.views.pop(name, None)
        if view is not None:
            view.close()

    def set_foreground(self, foreground: bool) -> None:
        """App visibility changed: pause every view, or resume each with an immediate refresh."""
        self.foreground = foreground
        for view in self.views.values():
            if foreground:
                view.start()
            else:
                view.pause()

    async def acknowledge(self, request_id) -> None:
        """
        The user opened a request's activity panel.

        Refreshes issued before or during the acknowledgment call are
        discarded so they cannot bring back the cleared counts.
        """
        key = str(request_id)
        for view in self.views.values():
            view.mark_acknowledged(key)

        await self.client.acknowledge(request_id)

        for view in self.views.values():
            view.mark_acknowledged(key)

    def close(self) -> None:
        for name in list(self.views):
            self.close_view(name)


def _unread_info(item: Dict[str, Any]) -> UnreadInfo:
    return UnreadInfo(
        unread_count=item.get("unreadCount", 0),
        has_recent_activity=item.get("hasRecentActivity", False),
        last_activity_at=item.get("lastActivityAt"),
    )


def list_view_fetcher(client, **filters: Any) -> Fetcher:
    """Fetcher for a request list view backed by RequestsApiClient.list_requests."""

    async def fetch() -> ViewSnapshot:
        page = await client.list_requests(**filters)
        items = {item["id"]: _unread_info(item) for item in page.get("requests", [])}
        return ViewSnapshot(items=items, payload=page)

    return fetch


def detail_view_fetcher(client, request_id) -> Fetcher:
    """Fetcher for a single request view: the request plus its unread summary."""

    async def fetch() -> ViewSnapshot:
        request = await client.get_request(request_id)
        unread = await client.get_unread(request_id)
        return ViewSnapshot(items={str(request_id): _unread_info(unread)}, payload=request)

    return fetch
