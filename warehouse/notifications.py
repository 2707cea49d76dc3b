"""
Customer notifications for delivery progress.

Mail is not actually sent: the mailer logs each message and keeps the most
recent ones in memory so they can be inspected. Notification failures never
affect the delivery operation that triggered them.
"""
import logging
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict

from . import models
from .config import FRONTEND_URL

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "assigned": "Your delivery has been assigned to a driver.",
    "picked_up": "Your delivery has been picked up and is on its way!",
    "in_transit": "Your delivery is in transit.",
    "arriving": "Your delivery will arrive soon!",
    "out_for_delivery": "Your delivery is out for delivery!",
    "delivered": "Your delivery has been completed.",
    "completed": "Your delivery has been completed and verified.",
    "cancelled": "Your delivery has been cancelled.",
    "failed": "Your delivery has failed.",
    "returned": "Your delivery is being returned.",
    "voided": "Your delivery has been voided.",
}


class Mailer:
    """Logging mail transport."""

    def __init__(self, keep: int = 100):
        self.outbox: Deque[Dict[str, Any]] = deque(maxlen=keep)

    def send_mail(self, to: str, subject: str, template: str, context: Dict[str, Any]) -> None:
        message = {
            "to": to,
            "subject": subject,
            "template": template,
            "context": context,
            "sent_at": datetime.utcnow().isoformat(),
        }
        self.outbox.append(message)
        logger.info(f"Mail to {to}: {subject} ({template})")


mailer = Mailer()


def send_status_notification(delivery: models.Delivery) -> None:
    """Tell the customer about the delivery's current status, if it has a message."""
    message = STATUS_MESSAGES.get(delivery.status)
    if not message:
        return
    try:
        mailer.send_mail(
            to=delivery.customer_email,
            subject=f"Delivery Update - {delivery.status}",
            template="delivery-status-update",
            context={
                "customer_name": delivery.customer_name,
                "status": delivery.status,
                "message": message,
                "tracking_link": f"{FRONTEND_URL}/deliveries/{delivery.id}",
            },
        )
    except Exception as e:
        logger.error(f"Error sending status notification for delivery {delivery.id}: {e}")


def send_completion_notification(delivery: models.Delivery) -> None:
    try:
        received_by = (delivery.proof_of_delivery or {}).get("received_by") or "Not specified"
        mailer.send_mail(
            to=delivery.customer_email,
            subject="Delivery Completed",
            template="delivery-completed",
            context={
                "customer_name": delivery.customer_name,
                "delivery_id": delivery.id,
                "completion_time": datetime.utcnow().isoformat(),
                "received_by": received_by,
            },
        )
    except Exception as e:
        logger.error(f"Error sending completion notification for delivery {delivery.id}: {e}")


def send_stock_alert(alert: Dict[str, Any]) -> None:
    """Mail subscriber for stock:alert and stock:expiry events."""
    try:
        mailer.send_mail(
            to="inventory@warehouse.local",
            subject=f"Stock alert - {alert.get('type')}",
            template="stock-alert",
            context=alert,
        )
    except Exception as e:
        logger.error(f"Error sending stock alert mail: {e}")
