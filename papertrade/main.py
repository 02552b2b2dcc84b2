"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from papertrade.config import settings
from papertrade.database import create_db_and_tables
from papertrade.utils.logging import setup_logging
from papertrade.api import deps, notifications, orders, portfolio, prices, system

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()
    deps.init_services()
    logger.info("Paper trading service started")

    yield

    deps.shutdown_services()


app = FastAPI(
    title="Paper Trading Service",
    description="Virtual-money stock trading ledger with market and limit orders",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(orders.router)
app.include_router(portfolio.router)
app.include_router(prices.router)
app.include_router(notifications.router)
app.include_router(system.router)
