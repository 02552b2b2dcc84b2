"""Per-account trading ledger: cash balance, positions and trade history.

Weighted-average cost accounting. A BUY folds the full cost (trade value plus
brokerage and taxes) into ``total_invested``; a SELL releases a proportional
slice of it as cost basis and books the difference to ``realized_pnl``.

The ledger is an in-memory value object. It knows nothing about storage or
observers: ``AccountRepository`` runs mutations on a copy, persists the
snapshot, swaps the copy in and then publishes events.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal

from papertrade.services import fees
from papertrade.services.result import ErrorCode, Result
from papertrade.utils.constants import ACTIONS, BUY, MARKET, ORDER_TYPES, SELL, TRADE_HISTORY_LIMIT
from papertrade.utils.money import ZERO, Money, money, pct, to_decimal

logger = logging.getLogger(__name__)

_NO_PRICE = Decimal("0")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dec(value) -> Decimal | None:
    return None if value is None else Decimal(value)


def _str(value) -> str | None:
    return None if value is None else str(value)


def _ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class Position:
    symbol: str
    quantity: int = 0
    avg_price: Decimal = _NO_PRICE  # unrounded: total_invested / quantity
    total_invested: Money = ZERO
    realized_pnl: Money = ZERO
    current_price: Decimal | None = None
    current_value: Money | None = None
    previous_close: Decimal | None = None
    unrealized_pnl: Money | None = None
    unrealized_pnl_pct: Decimal | None = None
    last_updated: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.quantity > 0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "quantity": self.quantity,
            "avg_price": str(self.avg_price),
            "total_invested": str(self.total_invested),
            "realized_pnl": str(self.realized_pnl),
            "current_price": _str(self.current_price),
            "current_value": _str(self.current_value),
            "previous_close": _str(self.previous_close),
            "unrealized_pnl": _str(self.unrealized_pnl),
            "unrealized_pnl_pct": _str(self.unrealized_pnl_pct),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        return cls(
            symbol=data["symbol"],
            quantity=int(data["quantity"]),
            avg_price=Decimal(data["avg_price"]),
            total_invested=Decimal(data["total_invested"]),
            realized_pnl=Decimal(data.get("realized_pnl") or "0.00"),
            current_price=_dec(data.get("current_price")),
            current_value=_dec(data.get("current_value")),
            previous_close=_dec(data.get("previous_close")),
            unrealized_pnl=_dec(data.get("unrealized_pnl")),
            unrealized_pnl_pct=_dec(data.get("unrealized_pnl_pct")),
            last_updated=_ts(data.get("last_updated")),
        )


@dataclass(frozen=True)
class Trade:
    """Immutable record of one executed trade."""

    id: str
    symbol: str
    quantity: int
    price: Decimal
    action: str
    order_type: str
    trade_value: Money
    brokerage: Money
    taxes: Money
    total_cost: Money  # cash paid for a BUY, net proceeds for a SELL
    realized_pnl: Money
    timestamp: datetime
    status: str = "EXECUTED"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "price": str(self.price),
            "action": self.action,
            "order_type": self.order_type,
            "trade_value": str(self.trade_value),
            "brokerage": str(self.brokerage),
            "taxes": str(self.taxes),
            "total_cost": str(self.total_cost),
            "realized_pnl": str(self.realized_pnl),
            "timestamp": self.timestamp.isoformat(),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Trade":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            quantity=int(data["quantity"]),
            price=Decimal(data["price"]),
            action=data["action"],
            order_type=data["order_type"],
            trade_value=Decimal(data["trade_value"]),
            brokerage=Decimal(data["brokerage"]),
            taxes=Decimal(data["taxes"]),
            total_cost=Decimal(data["total_cost"]),
            realized_pnl=Decimal(data["realized_pnl"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            status=data.get("status", "EXECUTED"),
        )

    @property
    def fees(self) -> Money:
        return self.brokerage + self.taxes


@dataclass(frozen=True)
class TradeExecution:
    trade: Trade
    position: Position
    balance: Money


@dataclass(frozen=True)
class PositionSummary:
    symbol: str
    quantity: int
    avg_price: Money
    total_invested: Money
    realized_pnl: Money
    current_price: Decimal | None
    current_value: Money
    unrealized_pnl: Money
    unrealized_pnl_pct: Decimal
    has_live_price: bool


@dataclass(frozen=True)
class PortfolioSummary:
    cash_balance: Money
    total_invested: Money
    total_current_value: Money
    total_realized_pnl: Money
    total_unrealized_pnl: Money
    total_pnl: Money
    total_pnl_pct: Decimal
    total_portfolio_value: Money
    lifetime_realized_pnl: Money
    position_count: int
    positions: tuple[PositionSummary, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AvailableActions:
    can_buy: bool
    can_sell: bool
    max_sell_quantity: int
    current_holdings: int
    avg_price: Money


def normalize_symbol(symbol) -> str:
    return symbol.strip().upper() if isinstance(symbol, str) else ""


def parse_price(value, field_name: str = "price") -> Result[Decimal]:
    """Finite positive Decimal, or a VALIDATION_ERROR naming ``field_name``."""
    try:
        price = to_decimal(value)
    except (TypeError, ValueError):
        return Result.fail(ErrorCode.VALIDATION_ERROR, f"{field_name} must be a number", field=field_name)
    if not price.is_finite() or price <= 0:
        return Result.fail(ErrorCode.VALIDATION_ERROR, f"{field_name} must be positive", field=field_name)
    return Result.ok(price)


class PositionLedger:
    """Cash balance, positions and bounded trade history of one account.

    Not thread-safe on its own; callers serialize mutations per account.
    """

    def __init__(
        self,
        user_id: str,
        cash_balance=Decimal("0"),
        positions: dict[str, Position] | None = None,
        trade_history: list[Trade] | None = None,
        history_limit: int = TRADE_HISTORY_LIMIT,
    ):
        self.user_id = user_id
        self._cash_balance = money(cash_balance)
        self._positions: dict[str, Position] = dict(positions or {})
        self._history: list[Trade] = list(trade_history or [])[:history_limit]
        self.history_limit = history_limit

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def cash_balance(self) -> Money:
        return self._cash_balance

    @property
    def positions(self) -> dict[str, Position]:
        return dict(self._positions)

    @property
    def trade_history(self) -> list[Trade]:
        return list(self._history)

    def get_position(self, symbol: str) -> Position:
        """Stored position, or a zero-value one for a never-traded symbol."""
        sym = normalize_symbol(symbol)
        return self._positions.get(sym) or Position(symbol=sym)

    def has_holdings(self, symbol: str) -> bool:
        return self.get_position(symbol).quantity > 0

    def get_trade_history(self, limit: int = 50) -> list[Trade]:
        return self._history[:max(limit, 0)]

    def available_actions(self, symbol: str) -> AvailableActions:
        position = self.get_position(symbol)
        return AvailableActions(
            can_buy=self._cash_balance > 0,
            can_sell=position.quantity > 0,
            max_sell_quantity=position.quantity,
            current_holdings=position.quantity,
            avg_price=money(position.avg_price),
        )

    def get_portfolio_summary(self) -> PortfolioSummary:
        total_invested = ZERO
        total_current_value = ZERO
        total_realized = ZERO
        lifetime_realized = ZERO
        rows = []

        for symbol in sorted(self._positions):
            position = self._positions[symbol]
            lifetime_realized += position.realized_pnl
            if position.quantity <= 0:
                continue

            has_live_price = position.current_value is not None
            current_value = position.current_value if has_live_price else position.total_invested
            unrealized = current_value - position.total_invested

            total_invested += position.total_invested
            total_current_value += current_value
            total_realized += position.realized_pnl

            rows.append(PositionSummary(
                symbol=symbol,
                quantity=position.quantity,
                avg_price=money(position.avg_price),
                total_invested=position.total_invested,
                realized_pnl=position.realized_pnl,
                current_price=position.current_price,
                current_value=current_value,
                unrealized_pnl=unrealized,
                unrealized_pnl_pct=pct(unrealized, position.total_invested),
                has_live_price=has_live_price,
            ))

        total_unrealized = total_current_value - total_invested
        total_pnl = total_realized + total_unrealized
        return PortfolioSummary(
            cash_balance=self._cash_balance,
            total_invested=total_invested,
            total_current_value=total_current_value,
            total_realized_pnl=total_realized,
            total_unrealized_pnl=total_unrealized,
            total_pnl=total_pnl,
            total_pnl_pct=pct(total_pnl, total_invested),
            total_portfolio_value=self._cash_balance + total_current_value,
            lifetime_realized_pnl=lifetime_realized,
            position_count=len(rows),
            positions=tuple(rows),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def execute_trade(self, symbol: str, quantity: int, price, action: str, order_type: str = MARKET) -> Result[TradeExecution]:
        """Apply one BUY or SELL. Either every field changes or none does."""
        sym = normalize_symbol(symbol)
        if not sym:
            return Result.fail(ErrorCode.VALIDATION_ERROR, "Symbol is required", field="symbol")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            return Result.fail(ErrorCode.VALIDATION_ERROR, "Quantity must be a positive integer", field="quantity")
        parsed = parse_price(price)
        if not parsed.success:
            return parsed
        price = parsed.value
        if action not in ACTIONS:
            return Result.fail(ErrorCode.VALIDATION_ERROR, f"Unknown action: {action}", field="action")
        if order_type not in ORDER_TYPES:
            return Result.fail(ErrorCode.VALIDATION_ERROR, f"Unknown order type: {order_type}", field="order_type")

        existing = self.get_position(sym)
        trade_value = money(quantity * price)
        brokerage = fees.brokerage(trade_value)
        taxes = fees.taxes(trade_value, action)
        now = _now()

        if action == BUY:
            total_cost = trade_value + brokerage + taxes
            if self._cash_balance < total_cost:
                return Result.fail(
                    ErrorCode.INSUFFICIENT_BALANCE,
                    f"Insufficient balance. Required: {total_cost}, Available: {self._cash_balance}",
                    required=total_cost,
                    available=self._cash_balance,
                )
            new_quantity = existing.quantity + quantity
            new_invested = existing.total_invested + total_cost
            new_position = replace(
                existing,
                quantity=new_quantity,
                total_invested=new_invested,
                avg_price=new_invested / new_quantity,
                last_updated=now,
            )
            if new_position.current_price is not None:
                new_position = _revalue(new_position, new_position.current_price, now)
            new_balance = self._cash_balance - total_cost
            realized = ZERO
        else:
            if quantity > existing.quantity:
                return Result.fail(
                    ErrorCode.INSUFFICIENT_HOLDINGS,
                    f"Insufficient holdings. You have {existing.quantity} shares, trying to sell {quantity}",
                    required=quantity,
                    available=existing.quantity,
                )
            total_cost = trade_value - brokerage - taxes
            remaining = existing.quantity - quantity
            # Remaining shares keep avg_price, so round2(remaining * avg_price) == total_invested
            new_invested = money(Decimal(remaining) * existing.avg_price) if remaining > 0 else ZERO
            sold_cost_basis = existing.total_invested - new_invested
            realized = total_cost - sold_cost_basis
            new_position = replace(
                existing,
                quantity=remaining,
                total_invested=new_invested,
                avg_price=existing.avg_price if remaining > 0 else _NO_PRICE,
                realized_pnl=existing.realized_pnl + realized,
                last_updated=now,
            )
            if remaining > 0 and new_position.current_price is not None:
                new_position = _revalue(new_position, new_position.current_price, now)
            elif remaining == 0:
                new_position = replace(new_position, current_value=None, unrealized_pnl=None, unrealized_pnl_pct=None)
            new_balance = self._cash_balance + total_cost

        trade = Trade(
            id=uuid.uuid4().hex,
            symbol=sym,
            quantity=quantity,
            price=price,
            action=action,
            order_type=order_type,
            trade_value=trade_value,
            brokerage=brokerage,
            taxes=taxes,
            total_cost=total_cost,
            realized_pnl=realized,
            timestamp=now,
        )

        # Commit point: nothing above touched self
        self._positions[sym] = new_position
        self._cash_balance = new_balance
        self._history = [trade] + self._history[: self.history_limit - 1]

        logger.info(f"[{self.user_id}] Trade executed: {action} {quantity} {sym} @ {price} (cost={total_cost})")
        return Result.ok(TradeExecution(trade=trade, position=new_position, balance=new_balance))

    def update_position_price(self, symbol: str, current_price, previous_close=None) -> Result[Position | None]:
        """Revalue an open position at a pushed market price.

        The value is ``None`` when the position is flat or unknown.
        """
        price = parse_price(current_price, "price")
        if not price.success:
            return price
        close = None
        if previous_close is not None:
            close = parse_price(previous_close, "previous_close")
            if not close.success:
                return close

        sym = normalize_symbol(symbol)
        position = self._positions.get(sym)
        if position is None or position.quantity <= 0:
            return Result.ok(None)
        updated = _revalue(position, price.value, _now())
        if close is not None:
            updated = replace(updated, previous_close=close.value)
        self._positions[sym] = updated
        return Result.ok(updated)

    def reset(self, starting_balance) -> None:
        """Wipe positions and history and restore the starting balance."""
        self._positions = {}
        self._history = []
        self._cash_balance = money(starting_balance)
        logger.info(f"[{self.user_id}] Ledger reset to balance {self._cash_balance}")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def copy(self) -> "PositionLedger":
        return PositionLedger(
            user_id=self.user_id,
            cash_balance=self._cash_balance,
            positions=self._positions,
            trade_history=self._history,
            history_limit=self.history_limit,
        )

    def snapshot(self) -> dict:
        return {
            "cash_balance": str(self._cash_balance),
            "positions": {sym: pos.to_dict() for sym, pos in self._positions.items()},
            "trade_history": [t.to_dict() for t in self._history],
        }

    @classmethod
    def from_snapshot(cls, user_id: str, data: dict, history_limit: int = TRADE_HISTORY_LIMIT) -> "PositionLedger":
        return cls(
            user_id=user_id,
            cash_balance=Decimal(data.get("cash_balance", "0")),
            positions={sym: Position.from_dict(p) for sym, p in (data.get("positions") or {}).items()},
            trade_history=[Trade.from_dict(t) for t in data.get("trade_history") or []],
            history_limit=history_limit,
        )


def _revalue(position: Position, price: Decimal, now: datetime) -> Position:
    current_value = money(position.quantity * price)
    unrealized = current_value - position.total_invested
    return replace(
        position,
        current_price=price,
        current_value=current_value,
        unrealized_pnl=unrealized,
        unrealized_pnl_pct=pct(unrealized, position.total_invested),
        last_updated=now,
    )
