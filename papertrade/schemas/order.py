"""Pydantic schemas for the order, portfolio and price APIs."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from papertrade.utils.constants import MAX_ORDER_QUANTITY, MIN_ORDER_QUANTITY


class OrderCreate(BaseModel):
    type: Literal["BUY", "SELL"]
    stock_symbol: str = Field(min_length=1, max_length=32)
    stock_name: str = Field(default="", max_length=120)
    quantity: int = Field(ge=MIN_ORDER_QUANTITY, le=MAX_ORDER_QUANTITY)
    price: Decimal = Field(gt=0, max_digits=18, decimal_places=4)
    order_type: Literal["MARKET", "LIMIT"] = "MARKET"
    limit_price: Decimal | None = Field(default=None, gt=0, max_digits=18, decimal_places=4)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=128)

    @field_validator("stock_symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("stock_name")
    @classmethod
    def _trim_name(cls, value: str) -> str:
        return value.strip()


class OrderRead(BaseModel):
    id: int
    user_id: str
    type: str
    stock_symbol: str
    stock_name: str
    quantity: int
    price: Decimal
    order_type: str
    limit_price: Decimal | None
    status: str
    filled_at: datetime | None
    cancelled_at: datetime | None
    rejected_at: datetime | None
    cancellation_reason: str | None
    rejection_reason: str | None
    rejection_code: str | None = None
    execution_price: Decimal | None
    fees: Decimal | None
    total: Decimal
    idempotency_key: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrderSummary(BaseModel):
    total_orders: int = 0
    filled_orders: int = 0
    open_orders: int = 0
    cancelled_orders: int = 0
    rejected_orders: int = 0
    total_value: Decimal = Decimal("0")


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class FillRequest(BaseModel):
    execution_price: Decimal = Field(gt=0, max_digits=18, decimal_places=4)


class PriceUpdate(BaseModel):
    symbol: str = Field(min_length=1, max_length=32)
    price: Decimal = Field(gt=0, max_digits=18, decimal_places=4)
    previous_close: Decimal | None = Field(default=None, gt=0, max_digits=18, decimal_places=4)

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text
