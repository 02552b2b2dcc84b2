"""Domain events and a fire-and-forget event channel.

The ledger and order lifecycle publish events after their changes are
committed. Delivery happens on a background thread so a slow or failing
subscriber can never block or fail the mutation that triggered it.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

logger = logging.getLogger(__name__)

_STOP = object()


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TradeExecuted:
    user_id: str
    trade: Any  # ledger.Trade
    summary: Any  # ledger.PortfolioSummary
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class PriceUpdated:
    user_id: str
    symbol: str
    price: Decimal
    summary: Any
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class OrderStatusChanged:
    user_id: str
    order_id: int
    symbol: str
    order_type: str  # BUY / SELL
    quantity: int
    status: str
    event: str  # PLACED, FILLED, CANCELLED, REJECTED, OPENED
    execution_price: Decimal | None = None
    reason: str | None = None
    occurred_at: datetime = field(default_factory=_now)


Handler = Callable[[Any], None]


class EventChannel:
    """Bounded queue drained by one daemon thread that fans out to subscribers."""

    def __init__(self, maxsize: int = 1000, name: str = "papertrade-events"):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._subscribers: list[Handler] = []
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._name = name

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers.append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)

        return unsubscribe

    def publish(self, event) -> bool:
        """Enqueue an event without blocking. Returns False if it was dropped."""
        self._ensure_worker()
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            logger.warning(f"Event queue full, dropping {type(event).__name__}")
            return False

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event has been delivered."""
        done = threading.Event()

        def _wait():
            self._queue.join()
            done.set()

        threading.Thread(target=_wait, daemon=True).start()
        return done.wait(timeout)

    def close(self, timeout: float = 5.0):
        thread = self._thread
        if thread is None or not thread.is_alive():
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning(f"Event queue still full after {timeout}s, abandoning worker {self._name}")
        else:
            thread.join(timeout)
        self._thread = None

    def _ensure_worker(self):
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def _run(self):
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self._dispatch(event)
            finally:
                self._queue.task_done()

    def _dispatch(self, event):
        with self._lock:
            handlers = list(self._subscribers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event subscriber {getattr(handler, '__name__', handler)!r} failed on {type(event).__name__}")
