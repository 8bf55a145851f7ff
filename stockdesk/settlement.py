"""Trade settlement.

A BUY or SELL touches three tables: the account's cash balance, the
(account, stock) position and the trade ledger. ``SettlementEngine.execute``
applies all three inside one database transaction, so a request either
settles completely or leaves nothing behind.

Trades for the same account are serialized three ways:

* an in-process lock per account id (``AccountLocks``),
* ``SELECT ... FOR UPDATE`` on the account and position rows, for databases
  that support row locks,
* a ``version_id_col`` on Account and Position, so a concurrent writer in
  another process that slipped past both is detected at flush time.

A detected conflict is reported as ``StorageFailure``; the engine does not
retry.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from stockdesk import ledger, positions, pricing
from stockdesk.errors import InsufficientFunds, InvalidInput, StorageFailure, TradingError
from stockdesk.models import BUY, TRADE_SIDES, Trade, money

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    trade: Dict[str, Any]
    new_balance: Decimal


class AccountLocks:
    """One lock per account id, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, list] = {}  # account id -> [lock, holders + waiters]

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, account_id: int):
        with self._guard:
            entry = self._locks.setdefault(account_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[account_id]


def normalize_side(side) -> str:
    s = str(side or "").upper().strip()
    if s not in TRADE_SIDES:
        raise InvalidInput("Invalid trade type")
    return s


def check_quantity(quantity) -> int:
    # bool is an int subclass; True is not a share count
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidInput("Invalid quantity")
    return quantity


class SettlementEngine:
    def __init__(self, session_factory: sessionmaker, locks: AccountLocks = None):
        self.session_factory = session_factory
        self.locks = locks if locks is not None else AccountLocks()

    def execute(self, account_id: int, stock_id: int, side, quantity) -> SettlementResult:
        side = normalize_side(side)
        quantity = check_quantity(quantity)

        with self.locks.hold(account_id):
            try:
                with self.session_factory() as db, db.begin():
                    result = self._settle(db, account_id, stock_id, side, quantity)
            except TradingError as e:
                logger.warning(
                    "Rejected %s %s x stock %s for account %s: %s",
                    side, quantity, stock_id, account_id, e.message,
                )
                raise
            except SQLAlchemyError as e:
                logger.error("Settlement failed for account %s: %s", account_id, e)
                raise StorageFailure("Trade could not be recorded") from e

        logger.info(
            "Executed %s %s %s @ %s for account %s (balance %s)",
            side, quantity, result.trade["stock"]["symbol"], result.trade["price"],
            account_id, result.new_balance,
        )
        return result

    def _settle(self, db, account_id, stock_id, side, quantity) -> SettlementResult:
        stock = ledger.get_stock(db, stock_id)
        account = ledger.get_account(db, account_id, for_update=True)
        price = pricing.get_price(db, stock_id)
        total_cost = money(quantity * price)

        if side == BUY:
            if account.balance < total_cost:
                raise InsufficientFunds("Insufficient balance")
            account.balance = money(account.balance - total_cost)
            positions.apply_buy(db, account_id, stock_id, quantity, price)
        else:
            positions.apply_sell(db, account_id, stock_id, quantity)
            account.balance = money(account.balance + total_cost)

        trade = Trade(account=account, stock=stock, side=side, quantity=quantity, price=price)
        db.add(trade)
        db.flush()
        return SettlementResult(trade=trade.to_dict(), new_balance=Decimal(account.balance))
