"""Account repository — per-user ledger persistence and serialization.

Every mutation of a user's ledger runs inside ``unit_of_work``:

1. take the user's lock (one writer per account, different accounts in parallel)
2. load the persisted snapshot into a working ``PositionLedger``
3. the caller mutates the working copy and stages rows on the session
4. ``commit()`` writes the snapshot with ``WHERE version = :expected``,
   commits the session and only then publishes queued events

If anything fails before the commit the session is rolled back and neither
the database nor any observer sees a partial change.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from papertrade.config import settings
from papertrade.models.account import Account
from papertrade.services.events import EventChannel, PriceUpdated, TradeExecuted
from papertrade.services.ledger import PortfolioSummary, Position, PositionLedger, TradeExecution
from papertrade.services.result import ErrorCode, Result
from papertrade.utils.constants import MARKET
from papertrade.utils.money import money

logger = logging.getLogger(__name__)


class StaleAccountError(RuntimeError):
    """The account row changed underneath us (another process saved first)."""


def infrastructure_failure(action: str, error: Exception) -> Result:
    logger.error(f"{action} failed: {error}")
    return Result.fail(ErrorCode.INFRASTRUCTURE_ERROR, f"{action} failed, please retry", reason=type(error).__name__)


class UnitOfWork:
    """Working ledger copy plus an open session for one locked account."""

    def __init__(self, repo: "AccountRepository", session: Session, account: Account, ledger: PositionLedger):
        self.repo = repo
        self.session = session
        self.account = account
        self.ledger = ledger
        self.committed = False
        self._events: list = []
        self._dirty = False

    @property
    def user_id(self) -> str:
        return self.account.user_id

    def mark_dirty(self):
        self._dirty = True

    def emit(self, event):
        """Queue an event for publication after a successful commit."""
        self._events.append(event)

    def commit(self):
        if self._dirty:
            self.repo._save(self.session, self.account, self.ledger)
        self.session.commit()
        self.committed = True
        for event in self._events:
            self.repo.publish(event)
        self._events.clear()


class AccountRepository:
    """Load/save port for per-user ledgers with per-account write locks."""

    def __init__(
        self,
        bind: Engine,
        events: EventChannel | None = None,
        starting_balance: Decimal | None = None,
        history_limit: int | None = None,
    ):
        self.bind = bind
        self.events = events
        self.starting_balance = money(starting_balance if starting_balance is not None else settings.starting_balance)
        self.history_limit = history_limit or settings.trade_history_limit
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Locks and sessions
    # ------------------------------------------------------------------

    def get_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def unit_of_work(self, user_id: str):
        """Hold the account lock and yield a ``UnitOfWork`` on a fresh session."""
        with self.get_lock(user_id):
            with Session(self.bind, expire_on_commit=False) as session:
                account = self._get_or_create(session, user_id)
                ledger = PositionLedger.from_snapshot(user_id, account.snapshot or {}, self.history_limit)
                yield UnitOfWork(self, session, account, ledger)

    def publish(self, event):
        if self.events is None:
            return
        try:
            self.events.publish(event)
        except Exception as e:
            logger.error(f"Failed to publish {type(event).__name__}: {e}")

    def _get_or_create(self, session: Session, user_id: str) -> Account:
        account = session.exec(select(Account).where(Account.user_id == user_id)).first()
        if account is not None:
            return account

        ledger = PositionLedger(user_id, self.starting_balance, history_limit=self.history_limit)
        account = Account(
            user_id=user_id,
            cash_balance=ledger.cash_balance,
            snapshot=ledger.snapshot(),
        )
        session.add(account)
        session.commit()
        session.refresh(account)
        logger.info(f"Created account for {user_id} with balance {ledger.cash_balance}")
        return account

    def _save(self, session: Session, account: Account, ledger: PositionLedger):
        now = datetime.now(timezone.utc)
        stmt = (
            update(Account)
            .where(Account.id == account.id, Account.version == account.version)
            .values(
                snapshot=ledger.snapshot(),
                cash_balance=ledger.cash_balance,
                version=account.version + 1,
                updated_at=now,
            )
        )
        result = session.connection().execute(stmt)
        if result.rowcount != 1:
            raise StaleAccountError(f"Account {account.user_id} was modified concurrently")

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    def get_ledger(self, user_id: str) -> Result[PositionLedger]:
        """Read-only view of the persisted ledger."""
        try:
            with Session(self.bind, expire_on_commit=False) as session:
                account = session.exec(select(Account).where(Account.user_id == user_id)).first()
        except SQLAlchemyError as e:
            return infrastructure_failure("Loading account", e)
        if account is None:
            return Result.ok(PositionLedger(user_id, self.starting_balance, history_limit=self.history_limit))
        return Result.ok(PositionLedger.from_snapshot(user_id, account.snapshot or {}, self.history_limit))

    def get_position(self, user_id: str, symbol: str) -> Result[Position]:
        loaded = self.get_ledger(user_id)
        if not loaded.success:
            return loaded
        return Result.ok(loaded.value.get_position(symbol))

    def get_portfolio_summary(self, user_id: str) -> Result[PortfolioSummary]:
        loaded = self.get_ledger(user_id)
        if not loaded.success:
            return loaded
        return Result.ok(loaded.value.get_portfolio_summary())

    def execute_trade(
        self,
        user_id: str,
        symbol: str,
        quantity: int,
        price,
        action: str,
        order_type: str = MARKET,
    ) -> Result[TradeExecution]:
        try:
            with self.unit_of_work(user_id) as uow:
                result = self.apply_trade(uow, symbol, quantity, price, action, order_type)
                if result.success:
                    uow.commit()
                return result
        except (SQLAlchemyError, StaleAccountError) as e:
            return infrastructure_failure("Trade execution", e)

    def apply_trade(self, uow: UnitOfWork, symbol, quantity, price, action, order_type=MARKET) -> Result[TradeExecution]:
        """Run a trade on the unit of work's ledger and queue ``TradeExecuted``."""
        result = uow.ledger.execute_trade(symbol, quantity, price, action, order_type)
        if result.success:
            uow.mark_dirty()
            uow.emit(TradeExecuted(
                user_id=uow.user_id,
                trade=result.value.trade,
                summary=uow.ledger.get_portfolio_summary(),
            ))
        return result

    def update_position_price(self, user_id: str, symbol: str, current_price, previous_close=None) -> Result[Position | None]:
        try:
            with self.unit_of_work(user_id) as uow:
                result = uow.ledger.update_position_price(symbol, current_price, previous_close)
                position = result.value
                if position is None:
                    return result
                uow.mark_dirty()
                uow.emit(PriceUpdated(
                    user_id=user_id,
                    symbol=position.symbol,
                    price=position.current_price,
                    summary=uow.ledger.get_portfolio_summary(),
                ))
                uow.commit()
                return Result.ok(position)
        except (SQLAlchemyError, StaleAccountError) as e:
            return infrastructure_failure("Price update", e)

    def reset(self, user_id: str, starting_balance=None) -> Result[PortfolioSummary]:
        """Demo reset: clear positions and history, restore the starting balance."""
        try:
            with self.unit_of_work(user_id) as uow:
                uow.ledger.reset(starting_balance if starting_balance is not None else self.starting_balance)
                uow.mark_dirty()
                uow.commit()
                return Result.ok(uow.ledger.get_portfolio_summary())
        except (SQLAlchemyError, StaleAccountError) as e:
            return infrastructure_failure("Account reset", e)
