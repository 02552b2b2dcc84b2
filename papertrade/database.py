"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from papertrade.config import settings

logger = logging.getLogger(__name__)

# Indexes that older databases may lack; created by create_all on fresh ones
_REQUIRED_INDEXES = {
    "orders": [
        ("ix_orders_idempotency_key", "CREATE UNIQUE INDEX ix_orders_idempotency_key ON orders (idempotency_key)"),
        ("ix_orders_user_status_created", "CREATE INDEX ix_orders_user_status_created ON orders (user_id, status, created_at)"),
        ("ix_orders_user_symbol_created", "CREATE INDEX ix_orders_user_symbol_created ON orders (user_id, stock_symbol, created_at)"),
    ],
    "account": [
        ("ix_account_user_id", "CREATE UNIQUE INDEX ix_account_user_id ON account (user_id)"),
    ],
}


def make_engine(database_url: str) -> Engine:
    """Create an engine; SQLite needs check_same_thread=False, in-memory SQLite a shared pool."""
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


engine = make_engine(settings.database_url)


def _run_migrations(bind: Engine):
    """Ensure the order and account indexes exist on databases created before they were added."""
    inspector = inspect(bind)
    tables = set(inspector.get_table_names())

    for table, indexes in _REQUIRED_INDEXES.items():
        if table not in tables:
            continue
        existing = {idx["name"] for idx in inspector.get_indexes(table)}
        for name, ddl in indexes:
            if name in existing:
                continue
            logger.info(f"Migrating: creating index {name} on {table}")
            with bind.connect() as conn:
                conn.execute(text(ddl))
                conn.commit()


def create_db_and_tables(bind: Engine | None = None):
    """Create all tables. Called on startup."""
    import papertrade.models  # noqa: F401  registers tables on the metadata

    bind = bind or engine
    SQLModel.metadata.create_all(bind)
    _run_migrations(bind)


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
