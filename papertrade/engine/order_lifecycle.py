"""Order state machine and the service that drives it.

States: PENDING -> {OPEN, FILLED, REJECTED, CANCELLED}; OPEN -> {FILLED,
CANCELLED, REJECTED}. FILLED, CANCELLED and REJECTED are terminal.

The ``plan_*`` functions are pure: they check the transition and return the
column changes without touching the order. ``OrderLifecycle`` persists those
changes with a conditional UPDATE on ``status`` so two concurrent requests can
never both fill, or fill after cancel.

MARKET orders execute against the ledger during ``place`` and are stored
FILLED. A ledger refusal (insufficient balance/holdings) stores the order as
REJECTED and the failing Result carries that order. LIMIT orders get the same
balance/holdings check at their limit price and are stored PENDING; they fill
later when a price push satisfies the limit.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from papertrade.engine.accounts import AccountRepository, StaleAccountError, UnitOfWork, infrastructure_failure
from papertrade.models.order import Order, OrderStatus
from papertrade.schemas.order import OrderCreate
from papertrade.services import fees as fee_calculator
from papertrade.services.events import OrderStatusChanged
from papertrade.services.ledger import normalize_symbol, parse_price
from papertrade.services.result import ErrorCode, Result
from papertrade.utils.constants import BUY, LIMIT, MARKET, SELL
from papertrade.utils.money import ZERO, money

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------

def check_limit_price(order: Order, execution_price: Decimal) -> Result:
    """BUY limits cap the price from above, SELL limits from below."""
    if order.order_type != LIMIT or order.limit_price is None:
        return Result.ok()
    if order.type == BUY and execution_price > order.limit_price:
        return Result.fail(
            ErrorCode.PRICE_ABOVE_LIMIT,
            f"Execution price {execution_price} exceeds limit price {order.limit_price} for buy order",
            execution_price=execution_price,
            limit_price=order.limit_price,
        )
    if order.type == SELL and execution_price < order.limit_price:
        return Result.fail(
            ErrorCode.PRICE_BELOW_LIMIT,
            f"Execution price {execution_price} is below limit price {order.limit_price} for sell order",
            execution_price=execution_price,
            limit_price=order.limit_price,
        )
    return Result.ok()


def plan_fill(order: Order, execution_price, fees=ZERO, now: datetime | None = None) -> Result[dict]:
    if order.status not in OrderStatus.ACTIVE:
        return Result.fail(ErrorCode.ORDER_NOT_FILLABLE, f"Only pending or open orders can be filled (status {order.status})", status=order.status)
    parsed = parse_price(execution_price, "execution_price")
    if not parsed.success:
        return parsed
    price = parsed.value
    guard = check_limit_price(order, price)
    if not guard.success:
        return guard
    fees = money(fees or ZERO)
    return Result.ok({
        "status": OrderStatus.FILLED,
        "filled_at": now or _now(),
        "execution_price": price,
        "fees": fees,
        "total": money(order.quantity * price + fees),
    })


def plan_cancel(order: Order, reason: str | None = None, now: datetime | None = None) -> Result[dict]:
    if order.status not in OrderStatus.ACTIVE:
        return Result.fail(ErrorCode.ORDER_NOT_CANCELLABLE, f"Only pending or open orders can be cancelled (status {order.status})", status=order.status)
    return Result.ok({
        "status": OrderStatus.CANCELLED,
        "cancelled_at": now or _now(),
        "cancellation_reason": reason,
    })


def plan_reject(order: Order, reason: str, code: ErrorCode | None = None, now: datetime | None = None) -> Result[dict]:
    if order.status not in OrderStatus.ACTIVE:
        return Result.fail(ErrorCode.ORDER_NOT_REJECTABLE, f"Only pending or open orders can be rejected (status {order.status})", status=order.status)
    return Result.ok({
        "status": OrderStatus.REJECTED,
        "rejected_at": now or _now(),
        "rejection_reason": reason,
        "rejection_code": code.value if code else None,
    })


def plan_open(order: Order) -> Result[dict]:
    if order.status != OrderStatus.PENDING:
        return Result.fail(ErrorCode.ORDER_NOT_OPENABLE, f"Only pending orders can be opened (status {order.status})", status=order.status)
    return Result.ok({"status": OrderStatus.OPEN})


def _apply(order: Order, plan: Result[dict]) -> Result[Order]:
    if not plan.success:
        return plan
    for key, value in plan.value.items():
        setattr(order, key, value)
    order.updated_at = _now()
    return Result.ok(order)


def fill_order(order: Order, execution_price, fees=ZERO) -> Result[Order]:
    return _apply(order, plan_fill(order, execution_price, fees))


def cancel_order(order: Order, reason: str | None = None) -> Result[Order]:
    return _apply(order, plan_cancel(order, reason))


def reject_order(order: Order, reason: str, code: ErrorCode | None = None) -> Result[Order]:
    return _apply(order, plan_reject(order, reason, code))


def open_order(order: Order) -> Result[Order]:
    return _apply(order, plan_open(order))


def validate_order_request(request: OrderCreate) -> Result | None:
    """Limit price is required for LIMIT orders and forbidden for MARKET ones."""
    if request.order_type == LIMIT and request.limit_price is None:
        return Result.fail(ErrorCode.VALIDATION_ERROR, "Limit price is required for limit orders", field="limit_price")
    if request.order_type == MARKET and request.limit_price is not None:
        return Result.fail(ErrorCode.VALIDATION_ERROR, "Limit price is only allowed for limit orders", field="limit_price")
    return None


def _same_request(order: Order, request: OrderCreate) -> bool:
    def _eq(a, b):
        if a is None or b is None:
            return a is None and b is None
        return Decimal(a) == Decimal(b)

    return (
        order.type == request.type
        and order.stock_symbol == request.stock_symbol
        and order.quantity == request.quantity
        and order.order_type == request.order_type
        and _eq(order.price, request.price)
        and _eq(order.limit_price, request.limit_price)
    )


def _event(order: Order, event: str, reason: str | None = None) -> OrderStatusChanged:
    return OrderStatusChanged(
        user_id=order.user_id,
        order_id=order.id,
        symbol=order.stock_symbol,
        order_type=order.type,
        quantity=order.quantity,
        status=order.status,
        event=event,
        execution_price=order.execution_price,
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Persisted lifecycle
# ---------------------------------------------------------------------------

class OrderLifecycle:
    """Places orders and applies state transitions with optimistic concurrency."""

    def __init__(self, accounts: AccountRepository):
        self.accounts = accounts
        self.bind = accounts.bind

    # -- placement ---------------------------------------------------------

    def place(self, user_id: str, request: OrderCreate) -> Result[Order]:
        invalid = validate_order_request(request)
        if invalid is not None:
            return invalid

        if request.idempotency_key:
            replay = self._replay_if_known(user_id, request)
            if replay is not None:
                return replay

        try:
            with self.accounts.unit_of_work(user_id) as uow:
                order = self._new_order(user_id, request)
                if request.order_type == MARKET:
                    return self._place_market(uow, order)
                return self._place_limit(uow, order)
        except IntegrityError:
            # Same idempotency key committed by a concurrent request
            replay = self._replay_if_known(user_id, request)
            if replay is not None:
                return replay
            return Result.fail(ErrorCode.IDEMPOTENCY_CONFLICT, "Duplicate order submission", idempotency_key=request.idempotency_key)
        except (SQLAlchemyError, StaleAccountError) as e:
            return infrastructure_failure("Order placement", e)

    def _new_order(self, user_id: str, request: OrderCreate) -> Order:
        reference_price = request.limit_price if request.order_type == LIMIT else request.price
        return Order(
            user_id=user_id,
            type=request.type,
            stock_symbol=request.stock_symbol,
            stock_name=request.stock_name or request.stock_symbol,
            quantity=request.quantity,
            price=request.price,
            order_type=request.order_type,
            limit_price=request.limit_price,
            total=money(request.quantity * reference_price),
            idempotency_key=request.idempotency_key,
        )

    def _place_market(self, uow: UnitOfWork, order: Order) -> Result[Order]:
        result = self.accounts.apply_trade(uow, order.stock_symbol, order.quantity, order.price, order.type, MARKET)
        if result.success:
            trade = result.value.trade
            _apply(order, plan_fill(order, order.price, trade.fees))
            event = "FILLED"
        else:
            _apply(order, plan_reject(order, result.error.message, result.error.code))
            event = "REJECTED"

        uow.session.add(order)
        uow.session.flush()
        uow.emit(_event(order, event, order.rejection_reason))
        uow.commit()

        logger.info(f"[{order.user_id}] Market order {order.id} {order.type} {order.quantity} {order.stock_symbol}: {order.status}")
        if result.success:
            return Result.ok(order)
        return Result.from_error(result.error, value=order)

    def _place_limit(self, uow: UnitOfWork, order: Order) -> Result[Order]:
        refusal = self._precheck(uow, order, order.limit_price)
        if refusal is not None:
            _apply(order, plan_reject(order, refusal.error.message, refusal.error.code))
            event = "REJECTED"
        else:
            event = "PLACED"

        uow.session.add(order)
        uow.session.flush()
        uow.emit(_event(order, event, order.rejection_reason))
        uow.commit()

        logger.info(f"[{order.user_id}] Limit order {order.id} {order.type} {order.quantity} {order.stock_symbol} @ {order.limit_price}: {order.status}")
        if refusal is not None:
            return Result.from_error(refusal.error, value=order)
        return Result.ok(order)

    def _precheck(self, uow: UnitOfWork, order: Order, price: Decimal) -> Result | None:
        """Balance/holdings check without mutating the ledger."""
        ledger = uow.ledger
        if order.type == BUY:
            trade_value = money(order.quantity * price)
            required = trade_value + fee_calculator.brokerage(trade_value) + fee_calculator.taxes(trade_value, BUY)
            if ledger.cash_balance < required:
                return Result.fail(
                    ErrorCode.INSUFFICIENT_BALANCE,
                    f"Insufficient balance. Required: {required}, Available: {ledger.cash_balance}",
                    required=required,
                    available=ledger.cash_balance,
                )
        else:
            held = ledger.get_position(order.stock_symbol).quantity
            if order.quantity > held:
                return Result.fail(
                    ErrorCode.INSUFFICIENT_HOLDINGS,
                    f"Insufficient holdings. You have {held} shares, trying to sell {order.quantity}",
                    required=order.quantity,
                    available=held,
                )
        return None

    def _replay_if_known(self, user_id: str, request: OrderCreate) -> Result[Order] | None:
        try:
            with Session(self.bind, expire_on_commit=False) as session:
                existing = session.exec(
                    select(Order).where(Order.idempotency_key == request.idempotency_key)
                ).first()
        except SQLAlchemyError as e:
            return infrastructure_failure("Idempotency lookup", e)

        if existing is None:
            return None
        if existing.user_id != user_id or not _same_request(existing, request):
            return Result.fail(
                ErrorCode.IDEMPOTENCY_CONFLICT,
                "Idempotency key was already used for a different order",
                idempotency_key=request.idempotency_key,
            )

        logger.info(f"[{user_id}] Replaying order {existing.id} for idempotency key {request.idempotency_key}")
        if existing.status == OrderStatus.REJECTED and existing.rejection_code:
            return Result.fail(ErrorCode(existing.rejection_code), existing.rejection_reason or "Order rejected", value=existing)
        return Result.ok(existing)

    # -- transitions -------------------------------------------------------

    def _cas(self, session: Session, order: Order, changes: dict, from_statuses=OrderStatus.ACTIVE) -> bool:
        """Conditional update: only succeeds if the row is still in ``from_statuses``."""
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.status.in_(from_statuses))
            .values(**changes, updated_at=_now())
        )
        return session.connection().execute(stmt).rowcount == 1

    def _load_owned(self, session: Session, user_id: str, order_id: int) -> Order | None:
        order = session.get(Order, order_id)
        if order is None or order.user_id != user_id:
            return None
        return order

    def _not_found(self, order_id: int) -> Result:
        return Result.fail(ErrorCode.ORDER_NOT_FOUND, "Order not found", order_id=order_id)

    def fill(self, user_id: str, order_id: int, execution_price) -> Result[Order]:
        """Fill a pending/open order at ``execution_price`` through the ledger."""
        parsed = parse_price(execution_price, "execution_price")
        if not parsed.success:
            return parsed
        price = parsed.value

        try:
            with self.accounts.unit_of_work(user_id) as uow:
                order = self._load_owned(uow.session, user_id, order_id)
                if order is None:
                    return self._not_found(order_id)

                precheck = plan_fill(order, price)
                if not precheck.success:
                    return Result.from_error(precheck.error, value=order)

                trade_result = self.accounts.apply_trade(
                    uow, order.stock_symbol, order.quantity, price, order.type, order.order_type
                )
                if not trade_result.success:
                    return self._reject_in(uow, order, trade_result)

                plan = plan_fill(order, price, trade_result.value.trade.fees)
                if not self._cas(uow.session, order, plan.value):
                    # Lost the race; uncommitted ledger copy is discarded
                    return Result.fail(ErrorCode.ORDER_NOT_FILLABLE, "Order is no longer pending or open", order_id=order_id)

                # Row already updated by the CAS; keep the ORM from re-flushing it
                uow.session.expunge(order)
                _apply(order, plan)
                uow.emit(_event(order, "FILLED"))
                uow.commit()
                logger.info(f"[{user_id}] Filled order {order.id} {order.type} {order.quantity} {order.stock_symbol} @ {price}")
                return Result.ok(order)
        except (SQLAlchemyError, StaleAccountError) as e:
            return infrastructure_failure("Order fill", e)

    def _reject_in(self, uow: UnitOfWork, order: Order, failure: Result) -> Result[Order]:
        plan = plan_reject(order, failure.error.message, failure.error.code)
        if not self._cas(uow.session, order, plan.value):
            return Result.fail(ErrorCode.ORDER_NOT_FILLABLE, "Order is no longer pending or open", order_id=order.id)
        uow.session.expunge(order)
        _apply(order, plan)
        uow.emit(_event(order, "REJECTED", order.rejection_reason))
        uow.commit()
        logger.warning(f"[{order.user_id}] Rejected order {order.id} at fill: {failure.error.message}")
        return Result.from_error(failure.error, value=order)

    def _transition(self, user_id: str, order_id: int, planner, event: str, from_statuses, not_allowed: ErrorCode, reason=None) -> Result[Order]:
        try:
            with Session(self.bind, expire_on_commit=False) as session:
                order = self._load_owned(session, user_id, order_id)
                if order is None:
                    return self._not_found(order_id)
                plan = planner(order)
                if not plan.success:
                    return Result.from_error(plan.error, value=order)
                if not self._cas(session, order, plan.value, from_statuses):
                    session.rollback()
                    session.refresh(order)
                    return Result.fail(not_allowed, f"Order is {order.status}", value=order, status=order.status)
                session.commit()
        except SQLAlchemyError as e:
            return infrastructure_failure(f"Order {event.lower()}", e)

        _apply(order, plan)
        self.accounts.publish(_event(order, event, reason))
        logger.info(f"[{user_id}] Order {order.id} {event.lower()}")
        return Result.ok(order)

    def cancel(self, user_id: str, order_id: int, reason: str | None = None) -> Result[Order]:
        return self._transition(
            user_id, order_id, lambda o: plan_cancel(o, reason), "CANCELLED",
            OrderStatus.ACTIVE, ErrorCode.ORDER_NOT_CANCELLABLE, reason,
        )

    def reject(self, user_id: str, order_id: int, reason: str) -> Result[Order]:
        return self._transition(
            user_id, order_id, lambda o: plan_reject(o, reason), "REJECTED",
            OrderStatus.ACTIVE, ErrorCode.ORDER_NOT_REJECTABLE, reason,
        )

    def open(self, user_id: str, order_id: int) -> Result[Order]:
        return self._transition(
            user_id, order_id, plan_open, "OPENED",
            (OrderStatus.PENDING,), ErrorCode.ORDER_NOT_OPENABLE,
        )

    # -- price-driven matching -------------------------------------------

    def match_limit_orders(self, user_id: str, symbol: str, price) -> Result[list[Order]]:
        """Fill the user's active LIMIT orders on ``symbol`` that ``price`` satisfies.

        Pending orders whose limit is not reached are moved to OPEN.
        """
        parsed = parse_price(price)
        if not parsed.success:
            return parsed
        price = parsed.value
        symbol = normalize_symbol(symbol)
        try:
            with Session(self.bind, expire_on_commit=False) as session:
                candidates = session.exec(
                    select(Order)
                    .where(
                        Order.user_id == user_id,
                        Order.stock_symbol == symbol,
                        Order.order_type == LIMIT,
                        Order.status.in_(OrderStatus.ACTIVE),
                    )
                    .order_by(Order.created_at, Order.id)
                ).all()
        except SQLAlchemyError as e:
            return infrastructure_failure("Limit order matching", e)

        filled = []
        for order in candidates:
            if check_limit_price(order, price).success:
                result = self.fill(user_id, order.id, price)
                if result.success:
                    filled.append(result.value)
                elif result.code == ErrorCode.INFRASTRUCTURE_ERROR:
                    return result
            elif order.status == OrderStatus.PENDING:
                self.open(user_id, order.id)
        return Result.ok(filled)

    # -- queries -----------------------------------------------------------

    def get_order(self, user_id: str, order_id: int) -> Result[Order]:
        try:
            with Session(self.bind, expire_on_commit=False) as session:
                order = self._load_owned(session, user_id, order_id)
        except SQLAlchemyError as e:
            return infrastructure_failure("Order lookup", e)
        if order is None:
            return self._not_found(order_id)
        return Result.ok(order)

    def list_orders(
        self,
        user_id: str,
        status: str | None = None,
        type: str | None = None,
        order_type: str | None = None,
        symbol: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Result[list[Order]]:
        stmt = select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
        if status is not None:
            stmt = stmt.where(Order.status == status)
        if type is not None:
            stmt = stmt.where(Order.type == type)
        if order_type is not None:
            stmt = stmt.where(Order.order_type == order_type)
        if symbol is not None:
            stmt = stmt.where(Order.stock_symbol == symbol.strip().upper())
        stmt = stmt.offset(offset).limit(limit)
        try:
            with Session(self.bind, expire_on_commit=False) as session:
                return Result.ok(list(session.exec(stmt).all()))
        except SQLAlchemyError as e:
            return infrastructure_failure("Order listing", e)

    def order_summary(self, user_id: str) -> Result[dict]:
        stmt = (
            select(Order.status, func.count(Order.id), func.sum(Order.total))
            .where(Order.user_id == user_id)
            .group_by(Order.status)
        )
        try:
            with Session(self.bind) as session:
                rows = session.exec(stmt).all()
        except SQLAlchemyError as e:
            return infrastructure_failure("Order summary", e)

        counts = {status: (count, total) for status, count, total in rows}

        def _count(*statuses):
            return sum(counts.get(s, (0, None))[0] for s in statuses)

        filled_total = counts.get(OrderStatus.FILLED, (0, None))[1]
        return Result.ok({
            "total_orders": _count(*OrderStatus.ALL),
            "filled_orders": _count(OrderStatus.FILLED),
            "open_orders": _count(*OrderStatus.ACTIVE),
            "cancelled_orders": _count(OrderStatus.CANCELLED),
            "rejected_orders": _count(OrderStatus.REJECTED),
            "total_value": money(filled_total or 0),
        })
