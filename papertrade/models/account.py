"""Account model — persisted ledger snapshot per user."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, Column


class Account(SQLModel, table=True):
    __tablename__ = "account"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    cash_balance: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)
    # {cash_balance, positions: {symbol: Position}, trade_history: [Trade]}, Decimals as strings
    snapshot: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    version: int = 0  # bumped on every save; saves are conditional on it
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
