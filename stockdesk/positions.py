import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from stockdesk import ledger
from stockdesk.errors import InsufficientHoldings
from stockdesk.models import Position, money

logger = logging.getLogger(__name__)


def apply_buy(db: Session, account_id: int, stock_id: int, quantity: int, price) -> Position:
    price = Decimal(price)
    cost = money(quantity * price)
    p = ledger.get_position(db, account_id, stock_id, for_update=True)

    if p is None:
        p = Position(
            account_id=account_id,
            stock_id=stock_id,
            quantity=quantity,
            average_price=money(price),
            total_investment=cost,
        )
        db.add(p)
    else:
        total_investment = Decimal(p.total_investment) + cost
        total_quantity = p.quantity + quantity
        p.quantity = total_quantity
        p.average_price = money(total_investment / total_quantity)
        p.total_investment = total_investment

    db.flush()
    return p


def apply_sell(db: Session, account_id: int, stock_id: int, quantity: int) -> Optional[Position]:
    """Take ``quantity`` shares out of a position; returns None once it is closed.

    The average price is left as it was: only the invested amount shrinks.
    """
    p = ledger.get_position(db, account_id, stock_id, for_update=True)
    if p is None or p.quantity < quantity:
        raise InsufficientHoldings("Insufficient shares")

    p.quantity -= quantity
    if p.quantity == 0:
        db.delete(p)
        db.flush()
        logger.debug("Closed position account=%s stock=%s", account_id, stock_id)
        return None

    p.total_investment = money(p.quantity * Decimal(p.average_price))
    db.flush()
    return p
