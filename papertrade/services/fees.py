"""Brokerage and statutory charges for a simulated trade.

Pure functions: no I/O, no state. All outputs are Money (2 decimals,
half-up). Negative trade values are a caller bug and raise ``ValueError``.
"""

from dataclasses import dataclass
from decimal import Decimal

from papertrade.utils.constants import (
    BROKERAGE_CAP,
    BROKERAGE_RATE,
    BUY,
    EXCHANGE_CHARGE_RATE,
    GST_RATE,
    SEBI_CHARGE_RATE,
    SELL,
    STAMP_DUTY_RATE,
    STT_RATE,
)
from papertrade.utils.money import Money, money, to_decimal

_ZERO = Decimal("0")


@dataclass(frozen=True)
class FeeBreakdown:
    brokerage: Money
    stt: Money
    exchange_charges: Money
    gst: Money
    sebi_charges: Money
    stamp_duty: Money
    taxes: Money

    @property
    def total(self) -> Money:
        return self.brokerage + self.taxes


def _checked(trade_value) -> Decimal:
    value = to_decimal(trade_value)
    if value < 0:
        raise ValueError(f"trade value must be non-negative, got {value}")
    return value


def brokerage(trade_value) -> Money:
    """0.1% of trade value, capped at 20."""
    value = _checked(trade_value)
    return money(min(value * BROKERAGE_RATE, BROKERAGE_CAP))


def _components(value: Decimal, action: str) -> tuple[Decimal, Decimal, Decimal, Decimal, Decimal]:
    stt = value * STT_RATE if action == SELL else _ZERO
    exchange_charges = value * EXCHANGE_CHARGE_RATE
    gst = (brokerage(value) + exchange_charges) * GST_RATE
    sebi_charges = value * SEBI_CHARGE_RATE
    stamp_duty = value * STAMP_DUTY_RATE if action == BUY else _ZERO
    return stt, exchange_charges, gst, sebi_charges, stamp_duty


def taxes(trade_value, action: str) -> Money:
    """STT + exchange charges + GST + SEBI charges + stamp duty, rounded once."""
    value = _checked(trade_value)
    return money(sum(_components(value, action), _ZERO))


def fee_breakdown(trade_value, action: str) -> FeeBreakdown:
    value = _checked(trade_value)
    stt, exchange_charges, gst, sebi_charges, stamp_duty = _components(value, action)
    return FeeBreakdown(
        brokerage=brokerage(value),
        stt=money(stt),
        exchange_charges=money(exchange_charges),
        gst=money(gst),
        sebi_charges=money(sebi_charges),
        stamp_duty=money(stamp_duty),
        taxes=taxes(value, action),
    )
