import logging
import threading
import time
from decimal import Decimal, InvalidOperation

from cachetools import TTLCache
from sqlalchemy.orm import Session

from stockdesk import ledger
from stockdesk.errors import InvalidInput
from stockdesk.models import Stock, money, utcnow

logger = logging.getLogger(__name__)

_MISSING = object()


def get_price(db: Session, stock_id: int) -> Decimal:
    return Decimal(ledger.get_stock(db, stock_id).current_price)


def set_price(db: Session, stock_id: int, new_price) -> Stock:
    """Move a stock to ``new_price``, widening the day's high/low to keep it in range.

    change/changePercent are derived from the opening price, so nothing else
    on the row needs recomputing.
    """
    try:
        price = money(new_price)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidInput("Invalid price") from e
    if not price.is_finite() or price <= 0:
        raise InvalidInput("Invalid price")

    stock = ledger.get_stock(db, stock_id, for_update=True)
    stock.current_price = price
    if price > stock.high:
        stock.high = price
    if price < stock.low:
        stock.low = price
    stock.last_updated = utcnow()
    db.flush()
    logger.info("%s repriced to %s (change %s)", stock.symbol, price, stock.change)
    return stock


class QuoteCache:
    """Short-lived cache of serialized quotes for read endpoints.

    Settlement always reads the price from the database; only the quote
    views go through here.
    """

    def __init__(self, maxsize: int = 512, ttl: int = 30, timer=time.monotonic):
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        # cachetools caches are not thread-safe; sync routes run on a thread pool
        self._lock = threading.Lock()

    def get(self, key, loader):
        """Return ``(quote, source)`` where source is "cache" or "live"."""
        with self._lock:
            # one lookup: an entry can expire between a membership test and the read
            try:
                quote = self._cache[key]
            except KeyError:
                quote = _MISSING
        if quote is not _MISSING:
            return quote, "cache"
        quote = loader()
        with self._lock:
            self._cache[key] = quote
        return quote, "live"

    def invalidate(self, *keys) -> None:
        with self._lock:
            for key in keys:
                self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
