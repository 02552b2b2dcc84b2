"""Tests for the per-account position ledger."""

import random
from decimal import Decimal

import pytest

from papertrade.services.ledger import Position, PositionLedger
from papertrade.services.result import ErrorCode
from papertrade.utils.constants import BUY, LIMIT, SELL
from papertrade.utils.money import money


def _ledger(balance="10000", positions=None, history_limit=1000) -> PositionLedger:
    return PositionLedger("alice", Decimal(balance), positions=positions, history_limit=history_limit)


def _holding(symbol="ABC", quantity=10, avg_price="100", invested="1000.00") -> dict:
    return {symbol: Position(symbol, quantity, Decimal(avg_price), Decimal(invested))}


# ---------------------------------------------------------------------------
# 1. Buys
# ---------------------------------------------------------------------------

class TestBuy:
    def test_first_buy_folds_fees_into_cost(self):
        ledger = _ledger()
        result = ledger.execute_trade("abc", 10, Decimal("100"), BUY)

        assert result.success
        trade = result.value.trade
        assert trade.symbol == "ABC"
        assert trade.trade_value == Decimal("1000.00")
        assert trade.brokerage == Decimal("1.00")
        assert trade.taxes == Decimal("0.25")
        assert trade.total_cost == Decimal("1001.25")
        assert trade.status == "EXECUTED"

        position = ledger.get_position("ABC")
        assert position.quantity == 10
        assert position.total_invested == Decimal("1001.25")
        assert position.avg_price == Decimal("100.125")
        assert ledger.cash_balance == Decimal("8998.75")
        assert result.value.balance == ledger.cash_balance

    def test_repeated_buys_keep_weighted_average(self):
        ledger = _ledger()
        for qty, price in [(3, "101.37"), (7, "99.99"), (11, "102.41")]:
            assert ledger.execute_trade("ABC", qty, Decimal(price), BUY).success

        position = ledger.get_position("ABC")
        assert position.quantity == 21
        assert money(position.quantity * position.avg_price) == money(position.total_invested)

    def test_insufficient_balance_leaves_ledger_unchanged(self):
        ledger = _ledger(balance="500")
        before = ledger.snapshot()

        result = ledger.execute_trade("ABC", 10, Decimal("100"), BUY)

        assert not result.success
        assert result.code == ErrorCode.INSUFFICIENT_BALANCE
        assert result.error.details["required"] == Decimal("1001.25")
        assert result.error.details["available"] == Decimal("500.00")
        assert ledger.snapshot() == before

    def test_buy_keeps_pushed_price_and_revalues(self):
        ledger = _ledger()
        ledger.execute_trade("ABC", 10, Decimal("100"), BUY)
        ledger.update_position_price("ABC", Decimal("110"))

        ledger.execute_trade("ABC", 10, Decimal("100"), BUY)

        position = ledger.get_position("ABC")
        assert position.current_price == Decimal("110")
        assert position.current_value == Decimal("2200.00")
        assert position.unrealized_pnl == Decimal("2200.00") - position.total_invested


# ---------------------------------------------------------------------------
# 2. Sells
# ---------------------------------------------------------------------------

class TestSell:
    def test_partial_sell_books_realized_pnl(self):
        ledger = _ledger(positions=_holding())

        result = ledger.execute_trade("ABC", 5, Decimal("120"), SELL)

        assert result.success
        trade = result.value.trade
        assert trade.trade_value == Decimal("600.00")
        assert trade.brokerage == Decimal("0.60")
        assert trade.taxes == Decimal("0.28")
        assert trade.total_cost == Decimal("599.12")
        assert trade.realized_pnl == Decimal("99.12")

        position = ledger.get_position("ABC")
        assert position.quantity == 5
        assert position.avg_price == Decimal("100")
        assert position.total_invested == Decimal("500.00")
        assert position.realized_pnl == Decimal("99.12")
        assert ledger.cash_balance == Decimal("10599.12")

    def test_oversell_fails_with_details(self):
        ledger = _ledger(positions=_holding(quantity=5, invested="500.00"))
        before = ledger.snapshot()

        result = ledger.execute_trade("ABC", 20, Decimal("100"), SELL)

        assert not result.success
        assert result.code == ErrorCode.INSUFFICIENT_HOLDINGS
        assert result.error.details == {"required": 20, "available": 5}
        assert ledger.snapshot() == before

    def test_sell_of_unknown_symbol_fails(self):
        result = _ledger().execute_trade("XYZ", 1, Decimal("10"), SELL)
        assert result.code == ErrorCode.INSUFFICIENT_HOLDINGS

    def test_selling_everything_resets_cost_fields(self):
        ledger = _ledger()
        ledger.execute_trade("ABC", 10, Decimal("100"), BUY)
        ledger.update_position_price("ABC", Decimal("105"))

        result = ledger.execute_trade("ABC", 10, Decimal("105"), SELL)

        assert result.success
        position = ledger.get_position("ABC")
        assert position.quantity == 0
        assert position.avg_price == 0
        assert position.total_invested == 0
        assert position.current_value is None
        assert position.realized_pnl == result.value.trade.realized_pnl
        assert not ledger.has_holdings("ABC")

    def test_realized_pnl_accumulates(self):
        ledger = _ledger(positions=_holding())
        first = ledger.execute_trade("ABC", 5, Decimal("120"), SELL).value.trade.realized_pnl
        second = ledger.execute_trade("ABC", 5, Decimal("90"), SELL).value.trade.realized_pnl

        assert ledger.get_position("ABC").realized_pnl == first + second

    def test_partial_sell_keeps_remaining_cost_in_step_with_avg_price(self):
        # 2 @ 50 costs 100.13, so avg_price is 50.065 and half a cent sits on each share
        ledger = _ledger()
        ledger.execute_trade("ABC", 2, Decimal("50"), BUY)
        assert ledger.get_position("ABC").avg_price == Decimal("50.065")

        result = ledger.execute_trade("ABC", 1, Decimal("50"), SELL)

        assert result.success
        position = ledger.get_position("ABC")
        assert position.quantity == 1
        assert position.avg_price == Decimal("50.065")
        assert position.total_invested == Decimal("50.07")
        assert money(position.quantity * position.avg_price) == position.total_invested
        assert result.value.trade.total_cost == Decimal("49.93")
        assert result.value.trade.realized_pnl == Decimal("-0.13")
        assert ledger.cash_balance == Decimal("9949.80")

    def test_buy_then_sell_round_trip_only_costs_fees(self):
        ledger = _ledger()
        buy = ledger.execute_trade("ABC", 10, Decimal("100"), BUY).value.trade
        sell = ledger.execute_trade("ABC", 10, Decimal("100"), SELL).value.trade

        fees = buy.brokerage + buy.taxes + sell.brokerage + sell.taxes
        assert fees == Decimal("2.72")
        assert ledger.cash_balance == Decimal("10000.00") - fees
        assert sell.realized_pnl == -fees
        assert ledger.get_position("ABC").total_invested == 0

    def test_cost_basis_tracks_avg_price_through_mixed_trades(self):
        rng = random.Random(20240611)
        ledger = _ledger(balance="10000000")

        for _ in range(300):
            held = ledger.get_position("ABC").quantity
            price = Decimal(rng.randint(100, 99999)) / 100
            if held == 0 or rng.random() < 0.5:
                result = ledger.execute_trade("ABC", rng.randint(1, 40), price, BUY)
            else:
                result = ledger.execute_trade("ABC", rng.randint(1, held), price, SELL)
            assert result.success

            position = ledger.get_position("ABC")
            if position.quantity:
                assert money(position.quantity * position.avg_price) == position.total_invested
            else:
                assert position.total_invested == 0
                assert position.avg_price == 0


# ---------------------------------------------------------------------------
# 3. Validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "symbol, quantity, price, action, order_type",
    [
        ("", 1, "10", BUY, "MARKET"),
        ("ABC", 0, "10", BUY, "MARKET"),
        ("ABC", -1, "10", BUY, "MARKET"),
        ("ABC", 1.5, "10", BUY, "MARKET"),
        ("ABC", True, "10", BUY, "MARKET"),
        ("ABC", 1, "0", BUY, "MARKET"),
        ("ABC", 1, "-5", BUY, "MARKET"),
        ("ABC", 1, "abc", BUY, "MARKET"),
        ("ABC", 1, "NaN", BUY, "MARKET"),
        ("ABC", 1, "10", "HOLD", "MARKET"),
        ("ABC", 1, "10", BUY, "STOP"),
    ],
)
def test_invalid_inputs_rejected(symbol, quantity, price, action, order_type):
    ledger = _ledger()
    result = ledger.execute_trade(symbol, quantity, price, action, order_type)
    assert result.code == ErrorCode.VALIDATION_ERROR
    assert ledger.cash_balance == Decimal("10000.00")
    assert ledger.trade_history == []


def test_order_type_recorded_on_trade():
    ledger = _ledger()
    trade = ledger.execute_trade("ABC", 1, Decimal("10"), BUY, LIMIT).value.trade
    assert trade.order_type == LIMIT


# ---------------------------------------------------------------------------
# 4. History, prices, summary
# ---------------------------------------------------------------------------

def test_trade_history_newest_first_and_capped():
    ledger = _ledger(history_limit=3)
    for price in (10, 11, 12, 13, 14):
        ledger.execute_trade("ABC", 1, Decimal(price), BUY)

    history = ledger.trade_history
    assert len(history) == 3
    assert [t.price for t in history] == [Decimal(14), Decimal(13), Decimal(12)]
    assert len(ledger.get_trade_history(limit=2)) == 2


def test_update_position_price_ignores_flat_positions():
    ledger = _ledger()
    result = ledger.update_position_price("ABC", Decimal("10"))
    assert result.success
    assert result.value is None


def test_update_position_price_revalues():
    ledger = _ledger()
    ledger.execute_trade("ABC", 10, Decimal("100"), BUY)

    position = ledger.update_position_price("ABC", Decimal("110"), previous_close=Decimal("105")).value

    assert position.current_value == Decimal("1100.00")
    assert position.unrealized_pnl == Decimal("98.75")
    assert position.previous_close == Decimal("105")
    assert ledger.get_position("ABC") == position


@pytest.mark.parametrize("current_price, previous_close", [("abc", None), ("-1", None), ("110", "NaN")])
def test_update_position_price_rejects_bad_prices(current_price, previous_close):
    ledger = _ledger()
    ledger.execute_trade("ABC", 10, Decimal("100"), BUY)
    before = ledger.snapshot()

    result = ledger.update_position_price("ABC", current_price, previous_close=previous_close)

    assert result.code == ErrorCode.VALIDATION_ERROR
    assert ledger.snapshot() == before


class TestPortfolioSummary:
    def test_falls_back_to_invested_without_price(self):
        ledger = _ledger()
        ledger.execute_trade("ABC", 10, Decimal("100"), BUY)

        summary = ledger.get_portfolio_summary()

        assert summary.total_invested == Decimal("1001.25")
        assert summary.total_current_value == Decimal("1001.25")
        assert summary.total_unrealized_pnl == 0
        assert summary.total_portfolio_value == Decimal("10000.00")
        assert summary.positions[0].has_live_price is False

    def test_uses_pushed_price(self):
        ledger = _ledger()
        ledger.execute_trade("ABC", 10, Decimal("100"), BUY)
        ledger.update_position_price("ABC", Decimal("110"))

        summary = ledger.get_portfolio_summary()

        assert summary.total_current_value == Decimal("1100.00")
        assert summary.total_unrealized_pnl == Decimal("98.75")
        assert summary.total_portfolio_value == Decimal("10098.75")
        assert summary.positions[0].has_live_price is True

    def test_closed_positions_only_count_toward_lifetime_realized(self):
        ledger = _ledger(positions=_holding())
        ledger.execute_trade("ABC", 10, Decimal("120"), SELL)

        summary = ledger.get_portfolio_summary()

        assert summary.position_count == 0
        assert summary.total_realized_pnl == 0
        assert summary.lifetime_realized_pnl == ledger.get_position("ABC").realized_pnl

    def test_summary_is_idempotent(self):
        ledger = _ledger()
        ledger.execute_trade("XYZ", 2, Decimal("50"), BUY)
        ledger.execute_trade("ABC", 3, Decimal("20"), BUY)

        assert ledger.get_portfolio_summary() == ledger.get_portfolio_summary()
        assert [p.symbol for p in ledger.get_portfolio_summary().positions] == ["ABC", "XYZ"]


def test_available_actions():
    ledger = _ledger(positions=_holding(quantity=7, invested="700.00"))
    actions = ledger.available_actions("abc")
    assert actions.can_buy and actions.can_sell
    assert actions.max_sell_quantity == 7
    assert actions.avg_price == Decimal("100.00")


def test_snapshot_round_trip_is_exact():
    ledger = _ledger()
    ledger.execute_trade("ABC", 3, Decimal("101.37"), BUY)
    ledger.update_position_price("ABC", Decimal("99.5"), previous_close=Decimal("100"))
    ledger.execute_trade("ABC", 1, Decimal("99.5"), SELL)

    restored = PositionLedger.from_snapshot("alice", ledger.snapshot())

    assert restored.snapshot() == ledger.snapshot()
    assert restored.get_position("ABC") == ledger.get_position("ABC")
    assert restored.trade_history == ledger.trade_history


def test_copy_is_independent():
    ledger = _ledger()
    clone = ledger.copy()
    clone.execute_trade("ABC", 1, Decimal("10"), BUY)
    assert ledger.cash_balance == Decimal("10000.00")
    assert ledger.positions == {}


def test_reset():
    ledger = _ledger()
    ledger.execute_trade("ABC", 1, Decimal("10"), BUY)
    ledger.reset(Decimal("5000"))
    assert ledger.cash_balance == Decimal("5000.00")
    assert ledger.positions == {}
    assert ledger.trade_history == []
