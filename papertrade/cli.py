"""CLI tool for admin operations.

Usage:
    python -m papertrade.cli init-db
    python -m papertrade.cli reset-account <user_id> [starting_balance]
    python -m papertrade.cli summary <user_id>
"""

import sys

from papertrade.database import create_db_and_tables, engine
from papertrade.engine.accounts import AccountRepository
from papertrade.utils.logging import setup_logging
from papertrade.utils.money import to_decimal


def init_db():
    create_db_and_tables()
    print("Database tables and indexes are up to date.")


def reset_account(user_id: str, starting_balance: str | None = None):
    """Clear a user's positions and history and restore the starting balance."""
    create_db_and_tables()
    balance = None
    if starting_balance is not None:
        try:
            balance = to_decimal(starting_balance)
        except ValueError:
            print(f"Invalid starting balance: {starting_balance}")
            sys.exit(1)

    result = AccountRepository(engine).reset(user_id, balance)
    if not result.success:
        print(f"Reset failed: {result.error.message}")
        sys.exit(1)
    print(f"Account '{user_id}' reset. Cash balance: {result.value.cash_balance}")


def summary(user_id: str):
    result = AccountRepository(engine).get_portfolio_summary(user_id)
    if not result.success:
        print(f"Could not load account: {result.error.message}")
        sys.exit(1)

    s = result.value
    print(f"Cash balance:     {s.cash_balance}")
    print(f"Invested:         {s.total_invested}")
    print(f"Current value:    {s.total_current_value}")
    print(f"Total P&L:        {s.total_pnl} ({s.total_pnl_pct}%)")
    print(f"Portfolio value:  {s.total_portfolio_value}")
    print(f"Lifetime realized: {s.lifetime_realized_pnl}")
    for p in s.positions:
        price = p.current_price if p.has_live_price else "n/a"
        print(f"  {p.symbol:<12} qty={p.quantity:<6} avg={p.avg_price:<10} price={price:<10} pnl={p.unrealized_pnl}")


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m papertrade.cli <command>")
        print("Commands: init-db, reset-account, summary")
        sys.exit(1)

    setup_logging()
    command, args = sys.argv[1], sys.argv[2:]
    if command == "init-db":
        init_db()
    elif command == "reset-account" and args:
        reset_account(*args[:2])
    elif command == "summary" and args:
        summary(args[0])
    else:
        print(f"Unknown command or missing arguments: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
