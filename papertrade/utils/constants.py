"""Shared constants: fee schedule, order limits and enum values."""

from decimal import Decimal

# Fee schedule (fractions of trade value)
BROKERAGE_RATE = Decimal("0.001")
BROKERAGE_CAP = Decimal("20")
STT_RATE = Decimal("0.00025")  # sell side only
EXCHANGE_CHARGE_RATE = Decimal("0.0000345")
GST_RATE = Decimal("0.18")  # on brokerage + exchange charges
SEBI_CHARGE_RATE = Decimal("0.000001")
STAMP_DUTY_RATE = Decimal("0.00003")  # buy side only

# Order limits
MIN_ORDER_QUANTITY = 1
MAX_ORDER_QUANTITY = 10_000

TRADE_HISTORY_LIMIT = 1000

BUY = "BUY"
SELL = "SELL"
ACTIONS = (BUY, SELL)

MARKET = "MARKET"
LIMIT = "LIMIT"
ORDER_TYPES = (MARKET, LIMIT)

# Risk level thresholds: (concentration %, volatility %)
HIGH_RISK_THRESHOLDS = (Decimal("50"), Decimal("15"))
MEDIUM_RISK_THRESHOLDS = (Decimal("30"), Decimal("10"))
