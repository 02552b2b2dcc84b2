"""Price feed API — push a quote, revalue the position, match limit orders."""

import logging

from fastapi import APIRouter, Depends

from papertrade.api.deps import Services, get_current_user_id, get_services, unwrap
from papertrade.schemas.order import OrderRead, PriceUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/prices", tags=["prices"])


@router.post("")
def push_price(
    body: PriceUpdate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    position = unwrap(services.accounts.update_position_price(user_id, body.symbol, body.price, body.previous_close))
    filled = unwrap(services.orders.match_limit_orders(user_id, body.symbol, body.price))
    if filled:
        logger.info(f"[{user_id}] Price {body.price} for {body.symbol} filled {len(filled)} limit order(s)")
    return {
        "symbol": body.symbol,
        "price": body.price,
        "position": position,
        "filled_orders": [OrderRead.model_validate(o) for o in filled],
    }
