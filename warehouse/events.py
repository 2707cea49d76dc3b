"""
Domain event bus for the Warehouse service.

Services publish named events (for example "delivery:statusUpdated" or
"stock:alert"). Each publish:

- calls in-process subscribers synchronously,
- broadcasts the event to connected websocket clients,
- POSTs it to the configured webhook URLs.

The last two are scheduled on the running event loop and never block or fail
the publishing request.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from . import webhooks

logger = logging.getLogger(__name__)

DELIVERY_CREATED = "delivery:created"
DELIVERY_UPDATED = "delivery:updated"
DELIVERY_STATUS_UPDATED = "delivery:statusUpdated"
DELIVERY_VOIDED = "delivery:voided"
DELIVERY_PROOF_ADDED = "delivery:proofAdded"
DELIVERY_DELETED = "delivery:deleted"
DELIVERIES_BULK_CREATED = "deliveries:bulkCreated"
DELIVERIES_BULK_UPDATED = "deliveries:bulkUpdated"
MOVEMENT_CREATED = "movement:created"
MOVEMENT_UPDATED = "movement:updated"
MOVEMENT_DELETED = "movement:deleted"
MOVEMENT_VOIDED = "movement:voided"
MOVEMENT_CANCELLED = "movement:cancelled"
MOVEMENTS_BULK_CREATED = "movements:bulkCreated"
MOVEMENTS_BULK_UPDATED = "movements:bulkUpdated"
MOVEMENTS_BULK_DELETED = "movements:bulkDeleted"
STOCK_ALERT = "stock:alert"
STOCK_EXPIRY = "stock:expiry"

Handler = Callable[[str, Dict[str, Any]], None]


class ConnectionManager:
    """Tracks websocket clients and fans messages out to them."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self.stats = {"total_connections": 0, "messages_broadcast": 0}

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        self.stats["total_connections"] += 1
        logger.info(f"WebSocket connected ({len(self.active_connections)} active)")

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected ({len(self.active_connections)} active)")

    async def broadcast(self, message: Dict[str, Any]):
        text = json.dumps(message, default=str)
        for websocket in list(self.active_connections):
            try:
                await websocket.send_text(text)
            except Exception as e:
                logger.error(f"Failed to send websocket message: {e}")
                self.disconnect(websocket)
        self.stats["messages_broadcast"] += 1


class EventBus:
    """
    In-process publish/subscribe hub.

    Attributes:
        manager (ConnectionManager): Websocket clients receiving every event
        webhook_urls (List[str]): Outbound webhook targets
    """

    def __init__(self, manager: ConnectionManager, webhook_urls: List[str]):
        self.manager = manager
        self.webhook_urls = webhook_urls
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, event: str, handler: Handler) -> None:
        """Register a handler for an event name, or "*" for every event."""
        self._subscribers.setdefault(event, []).append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._subscribers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: str, data: Any) -> None:
        """
        Emit an event. Subscriber errors are logged and never propagate.

        Args:
            event: Event name
            data: Payload; ORM objects must be converted by the caller
        """
        payload = jsonable_encoder(data)
        for handler in self._subscribers.get(event, []) + self._subscribers.get("*", []):
            try:
                handler(event, payload)
            except Exception as e:
                logger.error(f"Event handler for {event} failed: {e}")

        if not self.manager.active_connections and not self.webhook_urls:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, {event} not broadcast")
            return
        loop.create_task(self._dispatch(event, payload))

    async def _dispatch(self, event: str, payload: Any) -> None:
        message = {"event": event, "data": payload, "timestamp": datetime.utcnow().isoformat()}
        try:
            await self.manager.broadcast(message)
            await webhooks.send_webhook(event, payload, urls=self.webhook_urls)
        except Exception as e:
            logger.error(f"Event dispatch for {event} failed: {e}")


manager = ConnectionManager()
bus = EventBus(manager, webhooks.WEBHOOK_URLS)
