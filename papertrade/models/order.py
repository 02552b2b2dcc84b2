"""Order model — one row per user submission, kept forever as audit history."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Index
from sqlmodel import SQLModel, Field


class OrderStatus:
    PENDING = "PENDING"
    OPEN = "OPEN"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    ACTIVE = (PENDING, OPEN)
    TERMINAL = (FILLED, CANCELLED, REJECTED)
    ALL = (PENDING, OPEN, FILLED, CANCELLED, REJECTED)


class Order(SQLModel, table=True):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_user_status_created", "user_id", "status", "created_at"),
        Index("ix_orders_user_symbol_created", "user_id", "stock_symbol", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    type: str  # "BUY" or "SELL"
    stock_symbol: str
    stock_name: str = ""
    quantity: int
    price: Decimal = Field(max_digits=18, decimal_places=4)  # quoted price at submission
    order_type: str  # "MARKET" or "LIMIT"
    limit_price: Decimal | None = Field(default=None, max_digits=18, decimal_places=4)
    status: str = OrderStatus.PENDING

    filled_at: datetime | None = None
    cancelled_at: datetime | None = None
    rejected_at: datetime | None = None
    cancellation_reason: str | None = None
    rejection_reason: str | None = None
    rejection_code: str | None = None  # ErrorCode value when the ledger refused the order

    execution_price: Decimal | None = Field(default=None, max_digits=18, decimal_places=4)
    fees: Decimal | None = Field(default=None, max_digits=18, decimal_places=2)
    total: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)

    # NULLs never collide, so the unique index only covers keyed submissions
    idempotency_key: str | None = Field(default=None, unique=True, index=True, max_length=128)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.status in OrderStatus.ACTIVE
