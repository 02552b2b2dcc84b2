import os

# Must be set before papertrade.config is imported anywhere
os.environ.setdefault("PT_DATABASE_URL", "sqlite://")
os.environ.setdefault("PT_NOTIFICATIONS_ENABLED", "true")

from decimal import Decimal

import pytest

from papertrade.database import create_db_and_tables, make_engine
from papertrade.engine.accounts import AccountRepository
from papertrade.engine.order_lifecycle import OrderLifecycle
from papertrade.services.events import EventChannel


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so the event worker thread gets its own connection."""
    engine = make_engine(f"sqlite:///{tmp_path / 'papertrade.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def events():
    channel = EventChannel(maxsize=100)
    yield channel
    channel.close()


@pytest.fixture
def received(events):
    """Every event delivered by the channel, in order."""
    seen = []
    events.subscribe(seen.append)
    return seen


@pytest.fixture
def accounts(engine, events):
    return AccountRepository(engine, events, starting_balance=Decimal("10000"), history_limit=1000)


@pytest.fixture
def lifecycle(accounts):
    return OrderLifecycle(accounts)
