"""Portfolio API — summary, analytics, positions, trade history."""

from fastapi import APIRouter, Depends, Query

from papertrade.api.deps import get_accounts, get_current_user_id, unwrap
from papertrade.engine.accounts import AccountRepository
from papertrade.services.portfolio import analyze_portfolio

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


@router.get("/summary")
def portfolio_summary(
    user_id: str = Depends(get_current_user_id),
    accounts: AccountRepository = Depends(get_accounts),
):
    return unwrap(accounts.get_portfolio_summary(user_id))


@router.get("/metrics")
def portfolio_metrics(
    user_id: str = Depends(get_current_user_id),
    accounts: AccountRepository = Depends(get_accounts),
):
    """Display analytics: per-position metrics, risk, attribution and sectors."""
    ledger = unwrap(accounts.get_ledger(user_id))
    return analyze_portfolio(ledger.positions.values(), cash_balance=ledger.cash_balance)


@router.get("/positions/{symbol}")
def get_position(
    symbol: str,
    user_id: str = Depends(get_current_user_id),
    accounts: AccountRepository = Depends(get_accounts),
):
    return unwrap(accounts.get_position(user_id, symbol))


@router.get("/trades")
def trade_history(
    limit: int = Query(default=50, ge=1, le=1000),
    user_id: str = Depends(get_current_user_id),
    accounts: AccountRepository = Depends(get_accounts),
):
    ledger = unwrap(accounts.get_ledger(user_id))
    return ledger.get_trade_history(limit)


@router.get("/actions/{symbol}")
def available_actions(
    symbol: str,
    user_id: str = Depends(get_current_user_id),
    accounts: AccountRepository = Depends(get_accounts),
):
    ledger = unwrap(accounts.get_ledger(user_id))
    return ledger.available_actions(symbol)
