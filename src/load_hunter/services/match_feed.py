"""Shared per-tenant match feed.

Several consumers (dashboard sockets, background jobs) are often interested
in the same tenant's match records. Rather than each running its own query
and its own change subscription, they share one ``TenantMatchFeed``:

    feed = await registry.acquire(tenant_id)   # refcount += 1
    ...  feed.snapshot / feed.last_updated / feed.is_loading
    await registry.release(tenant_id)          # refcount -= 1, teardown at 0

The first acquire subscribes to the tenant's ``load_hunt_matches`` changes
and loads the snapshot; every change event triggers a coalesced refresh;
the last release unsubscribes and drops the cached state.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from load_hunter.app.config import get_settings
from load_hunter.domain.enums import WatchedResource
from load_hunter.services.lifecycle_store import LifecycleStore, match_to_dict
from load_hunter.services.realtime import ChangeEvent, ChangeNotifier, Subscription
from load_hunter.services.resource_fetcher import Loader, ResourceFetcher
from load_hunter.services.time_window import business_day_start

logger = logging.getLogger(__name__)

LoaderFactory = Callable[[str], Loader]
FeedListener = Callable[["TenantMatchFeed"], Awaitable[None]]


class TenantMatchFeed:
    """One tenant's shared match snapshot."""

    def __init__(self, tenant_id: str, fetcher: ResourceFetcher, stale_after: timedelta):
        self.tenant_id = tenant_id
        self.key = (tenant_id, WatchedResource.LOAD_HUNT_MATCHES.value)
        self.refcount = 0
        self.subscription: Optional[Subscription] = None
        self.listeners: set[FeedListener] = set()
        self._fetcher = fetcher
        self._stale_after = stale_after

    @property
    def snapshot(self) -> Any:
        return self._fetcher.value(self.key)

    @property
    def last_updated(self) -> Optional[datetime]:
        return self._fetcher.slot(self.key).last_updated

    @property
    def is_loading(self) -> bool:
        return self._fetcher.slot(self.key).is_loading

    @property
    def error(self) -> Optional[str]:
        return self._fetcher.slot(self.key).error

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """True when there is no snapshot yet, it is empty, or it is too old."""
        if not self.snapshot or self.last_updated is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - self.last_updated > self._stale_after

    async def notify_listeners(self) -> None:
        for listener in list(self.listeners):
            try:
                await listener(self)
            except Exception:
                logger.warning("Feed listener failed for tenant %s", self.tenant_id, exc_info=True)
                self.listeners.discard(listener)


class MatchFeedRegistry:
    """Reference-counted registry of per-tenant match feeds."""

    def __init__(
        self,
        notifier: ChangeNotifier,
        loader_factory: LoaderFactory,
        *,
        fetcher: Optional[ResourceFetcher] = None,
        stale_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.notifier = notifier
        self.loader_factory = loader_factory
        self.fetcher = fetcher or ResourceFetcher()
        self.stale_after = timedelta(
            seconds=settings.feed_stale_seconds if stale_seconds is None else stale_seconds
        )
        self.feeds: dict[str, TenantMatchFeed] = {}

    def get(self, tenant_id: str) -> Optional[TenantMatchFeed]:
        return self.feeds.get(tenant_id)

    async def acquire(self, tenant_id: str) -> TenantMatchFeed:
        """Take a reference on *tenant_id*'s feed, starting it if needed."""
        if not tenant_id:
            raise ValueError("tenant_id is required")

        feed = self.feeds.get(tenant_id)
        if feed is None:
            feed = TenantMatchFeed(tenant_id, self.fetcher, self.stale_after)
            self.feeds[tenant_id] = feed
        feed.refcount += 1

        if feed.subscription is None:
            feed.subscription = self.notifier.subscribe(
                tenant_id,
                WatchedResource.LOAD_HUNT_MATCHES,
                lambda event: self._on_change(tenant_id, event),
            )
            logger.info("Match feed started for tenant %s", tenant_id)

        if feed.is_stale():
            await self.fetcher.fetch(feed.key, self.loader_factory(tenant_id), supersede=False)
        return feed

    async def release(self, tenant_id: str) -> None:
        """Drop a reference; the last one tears the feed down."""
        feed = self.feeds.get(tenant_id)
        if feed is None:
            logger.warning("Release of unknown match feed for tenant %s", tenant_id)
            return
        feed.refcount -= 1
        if feed.refcount > 0:
            return

        if feed.subscription is not None:
            feed.subscription.unsubscribe()
            feed.subscription = None
        feed.listeners.clear()
        self.fetcher.drop(feed.key)
        del self.feeds[tenant_id]
        logger.info("Match feed stopped for tenant %s", tenant_id)

    @asynccontextmanager
    async def use(self, tenant_id: str):
        feed = await self.acquire(tenant_id)
        try:
            yield feed
        finally:
            await self.release(tenant_id)

    async def _on_change(self, tenant_id: str, event: ChangeEvent) -> None:
        if event.tenant_id != tenant_id:
            logger.warning(
                "Match feed of tenant %s ignoring event for tenant %s", tenant_id, event.tenant_id
            )
            return
        feed = self.feeds.get(tenant_id)
        if feed is None:
            return
        logger.debug("Match %s for tenant %s, refreshing feed", event.event_type.value, tenant_id)
        await self.fetcher.refresh(feed.key)
        # The feed may have been released while the refresh was running
        if self.feeds.get(tenant_id) is feed:
            await feed.notify_listeners()


def database_loader_factory(session_factory, business_timezone: Optional[str] = None) -> LoaderFactory:
    """Loader factory reading a tenant's match buckets through *session_factory*.

    The snapshot is ``{status: [match dict, ...]}`` for the seven buckets,
    time-boxed to the current business day.
    """
    tz_name = business_timezone or get_settings().business_timezone

    def factory(tenant_id: str) -> Loader:
        async def load() -> dict[str, list[dict]]:
            day_start = business_day_start(datetime.now(timezone.utc), tz_name)
            async with session_factory() as session:
                store = LifecycleStore(session)
                buckets = await store.fetch_match_buckets(tenant_id, day_start)
            return {
                status: [match_to_dict(match) for match in rows]
                for status, rows in buckets.items()
            }

        return load

    return factory
