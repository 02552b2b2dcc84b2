"""Order notifications — turns order events into stored Notification rows."""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from papertrade.models.notification import Notification
from papertrade.services.events import OrderStatusChanged

logger = logging.getLogger(__name__)


def build_notification(event: OrderStatusChanged) -> Notification | None:
    """Map an order event to a notification. Returns None for events users aren't told about."""
    subject = f"Your {event.order_type} order for {event.quantity} shares of {event.symbol}"

    if event.event == "PLACED":
        kind, title, message = "info", "Order Placed", f"{subject} has been placed successfully."
    elif event.event == "FILLED":
        kind, title, message = "success", "Order Executed", f"{subject} has been executed at ₹{event.execution_price}."
    elif event.event == "CANCELLED":
        kind, title, message = "warning", "Order Cancelled", f"{subject} has been cancelled."
    elif event.event == "REJECTED":
        kind, title = "error", "Order Rejected"
        message = f"{subject} has been rejected. {event.reason or ''}".rstrip()
    else:
        return None

    return Notification(
        user_id=event.user_id,
        type=kind,
        title=title,
        message=message,
        data={"order_id": event.order_id, "symbol": event.symbol, "status": event.status},
        created_at=event.occurred_at,
    )


class NotificationDispatcher:
    """EventChannel subscriber that stores a Notification per order event."""

    def __init__(self, bind: Engine):
        self.bind = bind

    def __call__(self, event):
        if not isinstance(event, OrderStatusChanged):
            return
        notification = build_notification(event)
        if notification is None:
            return
        try:
            with Session(self.bind) as session:
                session.add(notification)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store notification for order {event.order_id}: {e}")
            return
        logger.debug(f"[{event.user_id}] Notification '{notification.title}' for order {event.order_id}")
