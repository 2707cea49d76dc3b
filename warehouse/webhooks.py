"""
Webhook delivery for warehouse domain events.

Every event published on the event bus is POSTed to the URLs listed in
WEBHOOK_URLS. Delivery is best-effort: failures are logged and not retried.
"""
import logging
from datetime import datetime
import httpx
from typing import Dict, Any, List, Optional
import asyncio

from .config import WEBHOOK_URLS

logger = logging.getLogger(__name__)


async def send_webhook(event_type: str, data: Any, urls: Optional[List[str]] = None) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Event name (e.g., "delivery:statusUpdated", "stock:alert")
        data: Event data payload
        urls: Override for the configured URL list
    """
    targets = WEBHOOK_URLS if urls is None else urls
    if not targets:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat(),
    }

    async with httpx.AsyncClient(timeout=5.0) as client:
        # Send all webhooks concurrently
        await asyncio.gather(
            *(send_single_webhook(client, url, payload) for url in targets),
            return_exceptions=True,
        )


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> None:
    """
    Send a webhook to a single URL.

    Args:
        client: HTTP client
        url: Webhook URL
        payload: Event payload
    """
    try:
        response = await client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json"}
        )
        if response.status_code >= 400:
            logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.error(f"Webhook error for {url}: {e}")
