"""Shared API dependencies: caller identity, service wiring, error mapping."""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.engine import Engine

from papertrade.config import settings
from papertrade.engine.accounts import AccountRepository
from papertrade.engine.order_lifecycle import OrderLifecycle
from papertrade.models.order import Order
from papertrade.services.events import EventChannel
from papertrade.services.notifications import NotificationDispatcher
from papertrade.services.result import ErrorCode, Result

ERROR_STATUS = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.ORDER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.IDEMPOTENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.ORDER_NOT_CANCELLABLE: status.HTTP_409_CONFLICT,
    ErrorCode.ORDER_NOT_FILLABLE: status.HTTP_409_CONFLICT,
    ErrorCode.ORDER_NOT_REJECTABLE: status.HTTP_409_CONFLICT,
    ErrorCode.ORDER_NOT_OPENABLE: status.HTTP_409_CONFLICT,
    ErrorCode.INSUFFICIENT_BALANCE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INSUFFICIENT_HOLDINGS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.PRICE_ABOVE_LIMIT: status.HTTP_400_BAD_REQUEST,
    ErrorCode.PRICE_BELOW_LIMIT: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INFRASTRUCTURE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class Services:
    """Process-wide service graph: one event channel, one repository, one lifecycle."""

    def __init__(self, bind: Engine):
        self.bind = bind
        self.events = EventChannel(maxsize=settings.event_queue_size)
        self.accounts = AccountRepository(bind, self.events)
        self.orders = OrderLifecycle(self.accounts)
        self._unsubscribe = None
        if settings.notifications_enabled:
            self._unsubscribe = self.events.subscribe(NotificationDispatcher(bind))

    def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
        self.events.close()


_services: Services | None = None


def init_services(bind: Engine | None = None) -> Services:
    global _services
    if _services is None:
        from papertrade.database import engine

        _services = Services(bind or engine)
    return _services


def shutdown_services():
    global _services
    if _services is not None:
        _services.close()
        _services = None


def get_services() -> Services:
    return init_services()


def get_accounts(services: Services = Depends(get_services)) -> AccountRepository:
    return services.accounts


def get_order_lifecycle(services: Services = Depends(get_services)) -> OrderLifecycle:
    return services.orders


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """The caller identity arrives from the upstream auth proxy as X-User-Id."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return user_id


def unwrap(result: Result):
    """Return the Result's value or raise the HTTPException its error code maps to."""
    if result.success:
        return result.value
    detail = result.error.to_dict()
    if isinstance(result.value, Order):
        detail["order_id"] = result.value.id
        detail["status"] = result.value.status
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error.code, status.HTTP_400_BAD_REQUEST),
        detail=detail,
    )
