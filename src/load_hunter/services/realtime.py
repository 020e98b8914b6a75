"""Tenant-scoped change notifications.

An in-process pub/sub hub keyed by (tenant_id, resource). Writers publish a
``ChangeEvent`` after committing a row change; subscribers (the shared match
feed, background consumers) receive only the events of their own tenant.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Union

from load_hunter.domain.enums import ChangeEventType, WatchedResource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """One row change on a watched resource."""

    tenant_id: str
    resource: WatchedResource
    event_type: ChangeEventType
    new: Optional[dict] = None
    old: Optional[dict] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "resource": self.resource.value,
            "event_type": self.event_type.value,
            "new": self.new,
            "old": self.old,
            "occurred_at": self.occurred_at.isoformat(),
        }


ChangeCallback = Callable[[ChangeEvent], Union[Awaitable[None], None]]


class Subscription:
    """Handle returned by :meth:`ChangeNotifier.subscribe`."""

    def __init__(
        self,
        notifier: "ChangeNotifier",
        tenant_id: str,
        resource: WatchedResource,
        callback: ChangeCallback,
    ):
        self.id = uuid.uuid4().hex
        self.tenant_id = tenant_id
        self.resource = resource
        self._callback = callback
        self._notifier = notifier

    @property
    def active(self) -> bool:
        return self._notifier.is_subscribed(self.id)

    def unsubscribe(self) -> None:
        self._notifier.unsubscribe(self.id)

    async def deliver(self, event: ChangeEvent) -> bool:
        """Hand *event* to the callback. Events of another tenant are dropped."""
        if event.tenant_id != self.tenant_id:
            logger.warning(
                "Dropping %s event for tenant %s on subscription of tenant %s",
                event.resource.value,
                event.tenant_id,
                self.tenant_id,
            )
            return False
        result = self._callback(event)
        if inspect.isawaitable(result):
            await result
        return True


def _group_key(tenant_id: str, resource: WatchedResource) -> tuple[str, str]:
    return tenant_id, WatchedResource(resource).value


class ChangeNotifier:
    """Manages subscriptions with per-(tenant, resource) groups.

    Publishing targets a single group so other tenants never see the event.
    """

    def __init__(self):
        # subscription_id -> Subscription
        self.subscriptions: dict[str, Subscription] = {}
        # (tenant_id, resource) -> set of subscription ids
        self.groups: dict[tuple[str, str], set[str]] = {}
        # subscription_id -> deliveries still running
        self._pending: dict[str, set[asyncio.Task]] = {}

    def subscribe(
        self,
        tenant_id: str,
        resource: WatchedResource,
        callback: ChangeCallback,
    ) -> Subscription:
        """Register *callback* for *resource* changes of *tenant_id*."""
        if not tenant_id:
            raise ValueError("tenant_id is required to subscribe")
        resource = WatchedResource(resource)
        subscription = Subscription(self, tenant_id, resource, callback)
        self.subscriptions[subscription.id] = subscription
        self.groups.setdefault(_group_key(tenant_id, resource), set()).add(subscription.id)
        logger.debug(
            "Subscribed %s to %s for tenant %s", subscription.id, resource.value, tenant_id
        )
        return subscription

    def unsubscribe(self, subscription_id: str) -> None:
        """Drop a subscription. Its in-flight deliveries are cancelled; unknown ids are ignored."""
        subscription = self.subscriptions.pop(subscription_id, None)
        if subscription is None:
            return
        for task in list(self._pending.get(subscription_id, ())):
            task.cancel()
        key = _group_key(subscription.tenant_id, subscription.resource)
        members = self.groups.get(key)
        if members is not None:
            members.discard(subscription_id)
            if not members:
                del self.groups[key]

    def is_subscribed(self, subscription_id: str) -> bool:
        return subscription_id in self.subscriptions

    def subscriber_count(
        self,
        tenant_id: Optional[str] = None,
        resource: Optional[WatchedResource] = None,
    ) -> int:
        if tenant_id is not None and resource is not None:
            return len(self.groups.get(_group_key(tenant_id, resource), ()))
        return sum(
            1
            for sub in self.subscriptions.values()
            if (tenant_id is None or sub.tenant_id == tenant_id)
            and (resource is None or sub.resource == WatchedResource(resource))
        )

    async def publish(self, event: ChangeEvent) -> int:
        """Schedule delivery of *event* to its tenant's subscribers.

        Each delivery runs in its own task so a slow subscriber never holds
        up the writer. Returns the number of deliveries scheduled.
        """
        subscription_ids = list(self.groups.get(_group_key(event.tenant_id, event.resource), ()))
        scheduled = 0
        for sid in subscription_ids:
            subscription = self.subscriptions.get(sid)
            if subscription is None:
                continue
            task = asyncio.create_task(subscription.deliver(event))
            self._pending.setdefault(sid, set()).add(task)
            task.add_done_callback(partial(self._delivery_done, sid, event))
            scheduled += 1
        return scheduled

    def _delivery_done(self, sid: str, event: ChangeEvent, task: asyncio.Task) -> None:
        pending = self._pending.get(sid)
        if pending is not None:
            pending.discard(task)
            if not pending:
                del self._pending[sid]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Subscriber %s failed handling %s %s event",
                sid,
                event.resource.value,
                event.event_type.value,
                exc_info=exc,
            )

    def pending_deliveries(self, subscription_id: Optional[str] = None) -> int:
        if subscription_id is not None:
            return len(self._pending.get(subscription_id, ()))
        return sum(len(tasks) for tasks in self._pending.values())

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            tasks = [task for tasks in self._pending.values() for task in tasks]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def publish_change(
        self,
        tenant_id: str,
        resource: WatchedResource,
        event_type: ChangeEventType,
        new: Optional[dict[str, Any]] = None,
        old: Optional[dict[str, Any]] = None,
    ) -> int:
        """Convenience wrapper building the ``ChangeEvent``."""
        return await self.publish(
            ChangeEvent(
                tenant_id=tenant_id,
                resource=WatchedResource(resource),
                event_type=ChangeEventType(event_type),
                new=new,
                old=old,
            )
        )


notifier = ChangeNotifier()
