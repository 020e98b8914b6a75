"""WebSocket feed of a tenant's match buckets.

Each connection holds a reference on the tenant's shared match feed, so
any number of dashboards for one tenant share a single query and a single
change subscription.
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from load_hunter.infra.database import async_session
from load_hunter.services.match_feed import MatchFeedRegistry, TenantMatchFeed, database_loader_factory
from load_hunter.services.realtime import notifier

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

feed_registry = MatchFeedRegistry(notifier, database_loader_factory(async_session))


def snapshot_message(feed: TenantMatchFeed) -> dict:
    last_updated = feed.last_updated
    return {
        "type": "match_snapshot",
        "data": {
            "tenant_id": feed.tenant_id,
            "buckets": feed.snapshot or {},
            "last_updated": last_updated.isoformat() if last_updated else None,
            "is_loading": feed.is_loading,
            "error": feed.error,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.websocket("/ws/load-hunter/matches")
async def match_feed_socket(websocket: WebSocket):
    """Push the tenant's match snapshot on connect and after every change.

    The tenant comes from the ``X-Tenant-ID`` header or a ``tenant_id``
    query parameter. Supported incoming messages:
        {"type": "ping"}      ->  server replies {"type": "pong"}
        {"type": "snapshot"}  ->  server re-sends the current snapshot
    """
    tenant_id = websocket.headers.get("x-tenant-id") or websocket.query_params.get("tenant_id")
    if not tenant_id:
        await websocket.close(code=4400)
        return

    await websocket.accept()
    feed = await feed_registry.acquire(tenant_id)

    async def push(updated: TenantMatchFeed) -> None:
        await websocket.send_json(snapshot_message(updated))

    feed.listeners.add(push)
    logger.info("Match feed client connected: tenant=%s refs=%d", tenant_id, feed.refcount)

    try:
        await websocket.send_json(snapshot_message(feed))
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
            elif msg.get("type") == "snapshot":
                await websocket.send_json(snapshot_message(feed))
    except WebSocketDisconnect:
        logger.info("Match feed client disconnected: tenant=%s", tenant_id)
    except Exception as e:
        logger.error("Match feed WebSocket error for tenant %s: %s", tenant_id, e)
    finally:
        feed.listeners.discard(push)
        await feed_registry.release(tenant_id)
