"""Tests for portfolio analytics."""

from decimal import Decimal

from papertrade.services.ledger import Position
from papertrade.services.portfolio import (
    analyze_portfolio,
    performance_attribution,
    portfolio_metrics,
    position_metrics,
    resolve_price,
    risk_level,
    risk_metrics,
    sector_allocation,
)


def _pos(symbol, quantity, invested, current_price=None, realized="0.00"):
    invested = Decimal(invested)
    return Position(
        symbol=symbol,
        quantity=quantity,
        avg_price=invested / quantity,
        total_invested=invested,
        realized_pnl=Decimal(realized),
        current_price=Decimal(current_price) if current_price else None,
    )


# ---------------------------------------------------------------------------
# 1. Position level
# ---------------------------------------------------------------------------

class TestPositionMetrics:
    def test_against_previous_close(self):
        m = position_metrics(_pos("ABC", 10, "1000.00", realized="20.00"), Decimal("110"), Decimal("105"))

        assert m.current_value == Decimal("1100.00")
        assert m.unrealized_pnl == Decimal("100.00")
        assert m.unrealized_pnl_pct == Decimal("10.00")
        assert m.total_pnl == Decimal("120.00")
        assert m.day_change == Decimal("5.00")
        assert m.day_change_pct == Decimal("4.76")
        assert m.day_pnl == Decimal("50.00")
        assert m.is_profit and m.is_day_gainer

    def test_day_change_falls_back_to_avg_price(self):
        m = position_metrics(_pos("ABC", 10, "1000.00"), Decimal("95"))

        assert m.day_change == Decimal("-5.00")
        assert m.day_change_pct == Decimal("0.00")
        assert m.day_pnl == Decimal("-50.00")
        assert not m.is_day_gainer

    def test_flat_or_missing_position_is_empty(self):
        assert position_metrics(None, Decimal("10")).current_value == 0
        flat = position_metrics(Position("ABC"), Decimal("10"))
        assert flat.symbol == "ABC"
        assert flat.quantity == 0


def test_resolve_price_prefers_explicit_then_pushed_then_cost():
    position = _pos("ABC", 10, "1000.00", current_price="105")

    assert resolve_price(position, {"ABC": Decimal("110")}) == (Decimal("110"), True)
    assert resolve_price(position) == (Decimal("105"), True)
    assert resolve_price(_pos("ABC", 10, "1000.00")) == (Decimal("100"), False)


# ---------------------------------------------------------------------------
# 2. Portfolio level
# ---------------------------------------------------------------------------

def _book():
    return [
        _pos("AAA", 10, "1000.00", current_price="110"),
        _pos("BBB", 5, "500.00", current_price="90"),
    ]


class TestPortfolioMetrics:
    def test_empty_portfolio_is_all_cash(self):
        m = portfolio_metrics([], cash_balance=Decimal("1000"))
        assert m.total_portfolio_value == Decimal("1000.00")
        assert m.cash_allocation == Decimal("100")
        assert m.position_count == 0

    def test_totals_and_allocation(self):
        m = portfolio_metrics(_book(), cash_balance=Decimal("1000"))

        assert m.total_invested == Decimal("1500.00")
        assert m.total_current_value == Decimal("1550.00")
        assert m.unrealized_pnl == Decimal("50.00")
        assert m.total_portfolio_value == Decimal("2550.00")
        assert m.invested_allocation == Decimal("60.78")
        assert m.cash_allocation == Decimal("39.22")
        assert m.profitable_positions == 1
        assert m.losing_positions == 1
        assert m.win_rate == Decimal("50.00")
        assert m.avg_position_size == Decimal("750.00")
        assert m.largest_position == Decimal("1100.00")
        assert m.smallest_position == Decimal("450.00")

    def test_weightage_per_position(self):
        m = portfolio_metrics(_book())
        weights = {p.symbol: p.weightage for p in m.positions}
        assert weights == {"AAA": Decimal("70.97"), "BBB": Decimal("29.03")}

    def test_explicit_prices_override_pushed(self):
        m = portfolio_metrics(_book(), prices={"AAA": Decimal("100")})
        assert m.total_current_value == Decimal("1450.00")

    def test_closed_positions_skipped(self):
        m = portfolio_metrics(_book() + [Position("CCC", realized_pnl=Decimal("5.00"))])
        assert m.position_count == 2


class TestRisk:
    def test_levels(self):
        assert risk_level(Decimal("55"), Decimal("0")) == "High"
        assert risk_level(Decimal("0"), Decimal("16")) == "High"
        assert risk_level(Decimal("35"), Decimal("0")) == "Medium"
        assert risk_level(Decimal("10"), Decimal("11")) == "Medium"
        assert risk_level(Decimal("10"), Decimal("5")) == "Low"

    def test_empty_portfolio_defaults(self):
        risk = risk_metrics([], Decimal("0"))
        assert risk.diversification_score == Decimal("100")
        assert risk.risk_level == "Low"

    def test_concentration_and_diversification(self):
        m = portfolio_metrics(_book(), cash_balance=Decimal("1000"))
        risk = risk_metrics(m.positions, m.total_portfolio_value)

        assert risk.concentration_risk == Decimal("43.14")
        assert risk.max_position_weight == risk.concentration_risk
        assert risk.volatility == Decimal("0.00")
        assert risk.diversification_score == Decimal("0.00")
        assert risk.risk_level == "Medium"

    def test_volatility_is_population_std_of_day_changes(self):
        m = portfolio_metrics(
            _book(),
            cash_balance=Decimal("100000"),
            previous_closes={"AAA": Decimal("100"), "BBB": Decimal("100")},
        )
        # day changes: +10% and -10%
        risk = risk_metrics(m.positions, m.total_portfolio_value)
        assert risk.volatility == Decimal("10.00")


def test_sector_allocation_groups_unknown_as_others():
    m = portfolio_metrics(_book())
    sectors = sector_allocation(m.positions, {"AAA": "Technology"})

    assert [s.sector for s in sectors] == ["Technology", "Others"]
    assert sectors[0].allocation == Decimal("70.97")
    assert sectors[1].symbols == ("BBB",)
    assert sectors[1].pnl == Decimal("-50.00")


def test_performance_attribution_sorted_by_contribution():
    m = portfolio_metrics(_book())
    attribution = performance_attribution(m.positions)

    assert [a.symbol for a in attribution] == ["AAA", "BBB"]
    assert attribution[0].contribution == Decimal("200.00")
    assert attribution[1].absolute_contribution == Decimal("-50.00")


def test_analyze_portfolio_bundles_everything():
    report = analyze_portfolio(_book(), cash_balance=Decimal("1000"))
    assert report.metrics.position_count == 2
    assert report.risk.risk_level == "Medium"
    assert len(report.attribution) == 2
    assert report.sectors[0].sector == "Others"
