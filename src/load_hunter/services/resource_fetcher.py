"""Resource fetch coordination.

Owns one slot per key (typically ``(tenant_id, resource)``) and makes sure
that concurrent fetches for the same key resolve predictably:

* every fetch takes a sequence number; a completed fetch is applied only
  if its number is still the latest requested for the key, so a slow
  early response can never overwrite a newer one;
* ``refresh`` coalesces: while a fetch is in flight it joins it and
  schedules at most one trailing refetch;
* loaders are retried with bounded exponential backoff (tenacity). When
  retries are exhausted an advisory is recorded and the last known-good
  value is kept.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Hashable, Optional

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from load_hunter.app.config import get_settings

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]

MAX_ADVISORIES = 100


@dataclass(frozen=True)
class Advisory:
    """Non-fatal notice that a resource could not be refreshed."""

    key: Hashable
    message: str
    attempts: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ResourceSlot:
    key: Hashable
    loader: Optional[Loader] = None
    value: Any = None
    has_value: bool = False
    last_updated: Optional[datetime] = None
    error: Optional[str] = None
    latest_seq: int = 0
    applied_seq: int = 0
    inflight: Optional[asyncio.Task] = None
    trailing: bool = False

    @property
    def is_loading(self) -> bool:
        return self.inflight is not None and not self.inflight.done()


class ResourceFetcher:
    """Sequenced, coalesced, retrying fetches keyed by resource."""

    def __init__(
        self,
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self.max_attempts = max_attempts or settings.fetch_max_attempts
        self.base_delay = settings.fetch_base_delay_seconds if base_delay is None else base_delay
        self.slots: dict[Hashable, ResourceSlot] = {}
        self.advisories: deque[Advisory] = deque(maxlen=MAX_ADVISORIES)

    # ------------------------------------------------------------------
    # Slot access
    # ------------------------------------------------------------------

    def slot(self, key: Hashable) -> ResourceSlot:
        if key not in self.slots:
            self.slots[key] = ResourceSlot(key=key)
        return self.slots[key]

    def value(self, key: Hashable, default: Any = None) -> Any:
        slot = self.slots.get(key)
        if slot is None or not slot.has_value:
            return default
        return slot.value

    def advisories_for(self, key: Hashable) -> list[Advisory]:
        return [advisory for advisory in self.advisories if advisory.key == key]

    def drop(self, key: Hashable) -> None:
        """Forget a key, cancelling any fetch still in flight."""
        slot = self.slots.pop(key, None)
        if slot is not None and slot.is_loading:
            slot.inflight.cancel()

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch(
        self,
        key: Hashable,
        loader: Optional[Loader] = None,
        *,
        supersede: bool = True,
    ) -> Any:
        """Issue a new sequenced fetch that supersedes any in-flight one.

        Use when the request parameters changed. With ``supersede=False``
        this behaves like :meth:`refresh`. Returns the slot's value once
        this fetch settles, which is the newest applied result.
        """
        slot = self.slot(key)
        if loader is not None:
            slot.loader = loader
        if slot.loader is None:
            raise KeyError(f"No loader registered for {key!r}")
        if not supersede:
            return await self.refresh(key)
        return await self._start(slot)

    async def refresh(self, key: Hashable) -> Any:
        """Re-run the registered loader, coalescing with an in-flight fetch."""
        slot = self.slot(key)
        if slot.loader is None:
            raise KeyError(f"No loader registered for {key!r}")

        if not slot.is_loading:
            return await self._start(slot)

        slot.trailing = True
        await asyncio.wait({slot.inflight})
        if slot.trailing:
            slot.trailing = False
            return await self._start(slot)
        # Another waiter already started the trailing fetch
        if slot.is_loading:
            await asyncio.wait({slot.inflight})
        return slot.value

    async def _start(self, slot: ResourceSlot) -> Any:
        slot.latest_seq += 1
        task = asyncio.create_task(self._run(slot, slot.latest_seq, slot.loader))
        slot.inflight = task
        await asyncio.wait({task})
        return slot.value

    async def _run(self, slot: ResourceSlot, seq: int, loader: Loader) -> None:
        try:
            value = await self._load_with_retry(loader)
        except Exception as exc:
            if seq != slot.latest_seq:
                logger.debug("Ignoring failure of superseded fetch %s #%d", slot.key, seq)
                return
            message = f"Could not refresh {slot.key!r}: {exc}"
            slot.error = message
            self.advisories.append(Advisory(key=slot.key, message=message, attempts=self.max_attempts))
            logger.warning("%s (keeping previous value)", message)
            return

        if seq != slot.latest_seq:
            logger.debug(
                "Discarding stale result for %s (#%d, latest #%d)", slot.key, seq, slot.latest_seq
            )
            return
        slot.value = value
        slot.has_value = True
        slot.applied_seq = seq
        slot.error = None
        slot.last_updated = datetime.now(timezone.utc)

    async def _load_with_retry(self, loader: Loader) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=0, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await loader()
