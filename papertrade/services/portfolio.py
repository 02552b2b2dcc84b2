"""Stateless portfolio analytics for display.

All functions are pure computation over ledger positions, a price map and the
cash balance: no I/O, no database access. Monetary outputs and percentages are
rounded to 2 decimals (half-up).

Price resolution for a position: explicit ``prices`` entry, else the last
price pushed into the ledger, else the average cost (no live price yet).
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Iterable

import numpy as np

from papertrade.services.ledger import Position
from papertrade.utils.constants import HIGH_RISK_THRESHOLDS, MEDIUM_RISK_THRESHOLDS
from papertrade.utils.money import HUNDRED, ZERO, Money, money, pct, to_decimal


@dataclass(frozen=True)
class PositionMetrics:
    symbol: str
    quantity: int = 0
    avg_price: Money = ZERO
    current_price: Money = ZERO
    current_value: Money = ZERO
    total_invested: Money = ZERO
    unrealized_pnl: Money = ZERO
    unrealized_pnl_pct: Decimal = ZERO
    realized_pnl: Money = ZERO
    total_pnl: Money = ZERO
    total_pnl_pct: Decimal = ZERO
    day_change: Money = ZERO
    day_change_pct: Decimal = ZERO
    day_pnl: Money = ZERO
    is_profit: bool = False
    is_day_gainer: bool = False
    weightage: Decimal = ZERO
    has_live_price: bool = False


@dataclass(frozen=True)
class PortfolioMetrics:
    cash_balance: Money = ZERO
    total_invested: Money = ZERO
    total_current_value: Money = ZERO
    total_portfolio_value: Money = ZERO
    total_pnl: Money = ZERO
    total_pnl_pct: Decimal = ZERO
    unrealized_pnl: Money = ZERO
    unrealized_pnl_pct: Decimal = ZERO
    realized_pnl: Money = ZERO
    day_pnl: Money = ZERO
    day_pnl_pct: Decimal = ZERO
    invested_allocation: Decimal = ZERO
    cash_allocation: Decimal = HUNDRED
    position_count: int = 0
    profitable_positions: int = 0
    losing_positions: int = 0
    win_rate: Decimal = ZERO
    avg_position_size: Money = ZERO
    largest_position: Money = ZERO
    smallest_position: Money = ZERO
    is_portfolio_profit: bool = False
    is_day_gainer: bool = False
    positions: tuple[PositionMetrics, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RiskMetrics:
    concentration_risk: Decimal = ZERO
    volatility: Decimal = ZERO
    diversification_score: Decimal = HUNDRED
    max_position_weight: Decimal = ZERO
    risk_level: str = "Low"


@dataclass(frozen=True)
class SectorAllocation:
    sector: str
    total_value: Money
    total_invested: Money
    pnl: Money
    pnl_pct: Decimal
    allocation: Decimal
    position_count: int
    symbols: tuple[str, ...]


@dataclass(frozen=True)
class Attribution:
    symbol: str
    contribution: Decimal
    absolute_contribution: Money
    weightage: Decimal


@dataclass(frozen=True)
class PortfolioReport:
    metrics: PortfolioMetrics
    risk: RiskMetrics
    attribution: tuple[Attribution, ...]
    sectors: tuple[SectorAllocation, ...]


# ---------------------------------------------------------------------------
# Position level
# ---------------------------------------------------------------------------

def resolve_price(position: Position, prices: dict | None = None) -> tuple[Decimal, bool]:
    """Return (price, is_live) for a position."""
    if prices and position.symbol in prices and prices[position.symbol] is not None:
        return to_decimal(prices[position.symbol]), True
    if position.current_price is not None:
        return position.current_price, True
    return position.avg_price, False


def position_metrics(
    position: Position | None,
    current_price,
    previous_close=None,
    has_live_price: bool = True,
) -> PositionMetrics:
    if position is None or position.quantity <= 0:
        return PositionMetrics(symbol=position.symbol if position else "")

    price = to_decimal(current_price)
    quantity = position.quantity
    current_value = money(quantity * price)
    total_invested = position.total_invested or money(quantity * position.avg_price)
    unrealized = current_value - total_invested
    realized = position.realized_pnl
    total_pnl = unrealized + realized

    prev = previous_close if previous_close is not None else position.previous_close
    prev = to_decimal(prev) if prev is not None else None
    day_change = price - (prev if prev is not None else position.avg_price)
    day_change_pct = pct(day_change, prev) if prev else ZERO

    return PositionMetrics(
        symbol=position.symbol,
        quantity=quantity,
        avg_price=money(position.avg_price),
        current_price=money(price),
        current_value=current_value,
        total_invested=money(total_invested),
        unrealized_pnl=money(unrealized),
        unrealized_pnl_pct=pct(unrealized, total_invested),
        realized_pnl=money(realized),
        total_pnl=money(total_pnl),
        total_pnl_pct=pct(total_pnl, total_invested),
        day_change=money(day_change),
        day_change_pct=day_change_pct,
        day_pnl=money(quantity * day_change),
        is_profit=total_pnl >= 0,
        is_day_gainer=day_change >= 0,
        has_live_price=has_live_price,
    )


# ---------------------------------------------------------------------------
# Portfolio level
# ---------------------------------------------------------------------------

def portfolio_metrics(
    positions: Iterable[Position],
    prices: dict | None = None,
    cash_balance=ZERO,
    previous_closes: dict | None = None,
) -> PortfolioMetrics:
    cash = money(cash_balance)
    previous_closes = previous_closes or {}

    rows = []
    for position in positions:
        if position.quantity <= 0:
            continue
        price, live = resolve_price(position, prices)
        rows.append(position_metrics(position, price, previous_closes.get(position.symbol), live))

    if not rows:
        return PortfolioMetrics(cash_balance=cash, total_portfolio_value=cash)

    total_invested = sum((m.total_invested for m in rows), ZERO)
    total_current_value = sum((m.current_value for m in rows), ZERO)
    total_unrealized = sum((m.unrealized_pnl for m in rows), ZERO)
    total_realized = sum((m.realized_pnl for m in rows), ZERO)
    total_day_pnl = sum((m.day_pnl for m in rows), ZERO)
    profitable = sum(1 for m in rows if m.unrealized_pnl >= 0)

    rows = [replace(m, weightage=pct(m.current_value, total_current_value)) for m in rows]

    total_pnl = total_unrealized + total_realized
    total_portfolio_value = cash + total_current_value
    invested_allocation = pct(total_current_value, total_portfolio_value)
    values = [m.current_value for m in rows]
    positive_values = [v for v in values if v > 0]
    count = len(rows)

    return PortfolioMetrics(
        cash_balance=cash,
        total_invested=total_invested,
        total_current_value=total_current_value,
        total_portfolio_value=total_portfolio_value,
        total_pnl=total_pnl,
        total_pnl_pct=pct(total_pnl, total_invested),
        unrealized_pnl=total_unrealized,
        unrealized_pnl_pct=pct(total_unrealized, total_invested),
        realized_pnl=total_realized,
        day_pnl=total_day_pnl,
        day_pnl_pct=pct(total_day_pnl, total_invested),
        invested_allocation=invested_allocation,
        cash_allocation=HUNDRED - invested_allocation,
        position_count=count,
        profitable_positions=profitable,
        losing_positions=count - profitable,
        win_rate=pct(profitable, count),
        avg_position_size=money(total_invested / count),
        largest_position=max(values),
        smallest_position=min(positive_values) if positive_values else ZERO,
        is_portfolio_profit=total_pnl >= 0,
        is_day_gainer=total_day_pnl >= 0,
        positions=tuple(rows),
    )


def risk_level(concentration: Decimal, volatility: Decimal) -> str:
    high_conc, high_vol = HIGH_RISK_THRESHOLDS
    med_conc, med_vol = MEDIUM_RISK_THRESHOLDS
    if concentration > high_conc or volatility > high_vol:
        return "High"
    if concentration > med_conc or volatility > med_vol:
        return "Medium"
    return "Low"


def risk_metrics(metrics: Iterable[PositionMetrics], total_portfolio_value) -> RiskMetrics:
    rows = [m for m in metrics if m.quantity > 0]
    if not rows:
        return RiskMetrics()

    concentration = pct(max(m.current_value for m in rows), total_portfolio_value)
    # Population standard deviation of day change percentages
    changes = np.array([float(m.day_change_pct) for m in rows], dtype=float)
    volatility = money(float(np.std(changes)))
    score = Decimal(len(rows) * 10) - concentration
    diversification = min(HUNDRED, max(ZERO, score))

    return RiskMetrics(
        concentration_risk=concentration,
        volatility=volatility,
        diversification_score=money(diversification),
        max_position_weight=concentration,
        risk_level=risk_level(concentration, volatility),
    )


def sector_allocation(metrics: Iterable[PositionMetrics], sector_map: dict[str, str] | None = None) -> list[SectorAllocation]:
    sector_map = sector_map or {}
    buckets: dict[str, list[PositionMetrics]] = {}
    for m in metrics:
        if m.quantity <= 0:
            continue
        buckets.setdefault(sector_map.get(m.symbol, "Others"), []).append(m)

    grand_total = sum((m.current_value for rows in buckets.values() for m in rows), ZERO)
    result = []
    for sector, rows in buckets.items():
        value = sum((m.current_value for m in rows), ZERO)
        invested = sum((m.total_invested for m in rows), ZERO)
        pnl = sum((m.unrealized_pnl for m in rows), ZERO)
        result.append(SectorAllocation(
            sector=sector,
            total_value=value,
            total_invested=invested,
            pnl=pnl,
            pnl_pct=pct(pnl, invested),
            allocation=pct(value, grand_total),
            position_count=len(rows),
            symbols=tuple(m.symbol for m in rows),
        ))
    result.sort(key=lambda s: s.total_value, reverse=True)
    return result


def performance_attribution(metrics: Iterable[PositionMetrics]) -> list[Attribution]:
    rows = [m for m in metrics if m.quantity > 0]
    total = sum((m.unrealized_pnl for m in rows), ZERO)
    result = [
        Attribution(
            symbol=m.symbol,
            contribution=pct(m.unrealized_pnl, total),
            absolute_contribution=m.unrealized_pnl,
            weightage=m.weightage,
        )
        for m in rows
    ]
    result.sort(key=lambda a: a.absolute_contribution, reverse=True)
    return result


def analyze_portfolio(
    positions: Iterable[Position],
    prices: dict | None = None,
    cash_balance=ZERO,
    previous_closes: dict | None = None,
    sector_map: dict[str, str] | None = None,
) -> PortfolioReport:
    """Full display report: metrics, risk, attribution and sector split."""
    metrics = portfolio_metrics(positions, prices, cash_balance, previous_closes)
    return PortfolioReport(
        metrics=metrics,
        risk=risk_metrics(metrics.positions, metrics.total_portfolio_value),
        attribution=tuple(performance_attribution(metrics.positions)),
        sectors=tuple(sector_allocation(metrics.positions, sector_map)),
    )
