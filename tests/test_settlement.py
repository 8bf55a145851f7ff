from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from stockdesk import ledger, pricing
from stockdesk import settlement as settlement_module
from stockdesk.errors import InsufficientFunds, InsufficientHoldings, InvalidInput, NotFound, StorageFailure
from stockdesk.models import Trade
from stockdesk.settlement import AccountLocks


def snapshot(SessionLocal, account_id, stock_id):
    with SessionLocal() as db:
        account = ledger.get_account(db, account_id)
        p = ledger.get_position(db, account_id, stock_id)
        position = None
        if p is not None:
            position = (p.quantity, Decimal(p.average_price), Decimal(p.total_investment))
        return Decimal(account.balance), position, ledger.count_trades(db, account_id)


def test_buy_sell_walkthrough(SessionLocal, settlement, add_stock, add_account):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)

    r1 = settlement.execute(acct, stock, "BUY", 50)
    assert r1.new_balance == Decimal("500")
    assert r1.trade["type"] == "BUY"
    assert r1.trade["quantity"] == 50
    assert r1.trade["price"] == 10.0
    assert r1.trade["totalAmount"] == 500.0
    assert r1.trade["status"] == "COMPLETED"
    assert snapshot(SessionLocal, acct, stock) == (Decimal("500"), (50, Decimal("10"), Decimal("500")), 1)

    with SessionLocal() as db, db.begin():
        pricing.set_price(db, stock, 12)

    r2 = settlement.execute(acct, stock, "BUY", 10)
    assert r2.new_balance == Decimal("380")
    balance, position, trades = snapshot(SessionLocal, acct, stock)
    assert position == (60, Decimal("10.3333"), Decimal("620"))
    assert trades == 2

    r3 = settlement.execute(acct, stock, "SELL", 60)
    assert r3.new_balance == Decimal("1100")
    assert r3.trade["totalAmount"] == 720.0
    assert snapshot(SessionLocal, acct, stock) == (Decimal("1100"), None, 3)


def test_partial_sell_keeps_average_price(SessionLocal, settlement, add_stock, add_account):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)
    settlement.execute(acct, stock, "BUY", 40)

    with SessionLocal() as db, db.begin():
        pricing.set_price(db, stock, 15)
    r = settlement.execute(acct, stock, "SELL", 10)

    assert r.new_balance == Decimal("750")
    _, position, _ = snapshot(SessionLocal, acct, stock)
    assert position == (30, Decimal("10"), Decimal("300"))


def test_sell_more_than_held_changes_nothing(SessionLocal, settlement, add_stock, add_account):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)
    settlement.execute(acct, stock, "BUY", 5)
    before = snapshot(SessionLocal, acct, stock)

    with pytest.raises(InsufficientHoldings):
        settlement.execute(acct, stock, "SELL", 10)

    assert snapshot(SessionLocal, acct, stock) == before


def test_sell_without_position(SessionLocal, settlement, add_stock, add_account):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)

    with pytest.raises(InsufficientHoldings):
        settlement.execute(acct, stock, "SELL", 1)

    assert snapshot(SessionLocal, acct, stock) == (Decimal("1000"), None, 0)


def test_buy_beyond_balance_changes_nothing(SessionLocal, settlement, add_stock, add_account):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)

    with pytest.raises(InsufficientFunds):
        settlement.execute(acct, stock, "BUY", 101)

    assert snapshot(SessionLocal, acct, stock) == (Decimal("1000"), None, 0)


def test_buy_exact_balance(SessionLocal, settlement, add_stock, add_account):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)

    r = settlement.execute(acct, stock, "buy", 100)

    assert r.new_balance == Decimal("0")
    assert r.trade["type"] == "BUY"


@pytest.mark.parametrize("side", ["HOLD", "", None])
def test_rejects_unknown_side(settlement, add_stock, add_account, side):
    acct = add_account()
    stock = add_stock()
    with pytest.raises(InvalidInput, match="Invalid trade type"):
        settlement.execute(acct, stock, side, 1)


@pytest.mark.parametrize("quantity", [0, -3, 1.5, True, "2"])
def test_rejects_bad_quantity(settlement, add_stock, add_account, quantity):
    acct = add_account()
    stock = add_stock()
    with pytest.raises(InvalidInput, match="Invalid quantity"):
        settlement.execute(acct, stock, "BUY", quantity)


def test_unknown_stock(settlement, add_account):
    acct = add_account()
    with pytest.raises(NotFound, match="Stock not found"):
        settlement.execute(acct, 999, "BUY", 1)


def test_unknown_account(settlement, add_stock):
    stock = add_stock()
    with pytest.raises(NotFound, match="Account not found"):
        settlement.execute(999, stock, "BUY", 1)


def test_trade_record_is_linked(SessionLocal, settlement, add_stock, add_account):
    acct = add_account()
    stock = add_stock(symbol="bolt", price=25)

    r = settlement.execute(acct, stock, "BUY", 4)

    with SessionLocal() as db:
        trade = db.get(Trade, r.trade["id"])
        assert trade.account_id == acct
        assert trade.stock.symbol == "BOLT"
        assert trade.total_amount == Decimal("100")
    assert r.trade["stock"] == {"id": stock, "symbol": "BOLT", "name": "bolt Corp"}


def test_concurrent_buys_never_overdraw(SessionLocal, settlement, add_stock, add_account):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)

    def buy():
        try:
            settlement.execute(acct, stock, "BUY", 20)
            return True
        except InsufficientFunds:
            return False

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda _: buy(), range(10)))

    assert outcomes.count(True) == 5
    balance, position, trades = snapshot(SessionLocal, acct, stock)
    assert balance == Decimal("0")
    assert position[0] == 100
    assert trades == 5
    assert len(settlement.locks) == 0


def reject_trade_rows(monkeypatch):
    # a status outside ck_trade_status fails the insert after balance and position have flushed
    monkeypatch.setattr(settlement_module, "Trade", lambda **kw: Trade(status="LOST", **kw))


@pytest.mark.parametrize("side,quantity", [("BUY", 20), ("SELL", 10), ("SELL", 30)])
def test_failed_trade_insert_rolls_everything_back(
    monkeypatch, SessionLocal, settlement, add_stock, add_account, side, quantity
):
    acct = add_account(balance=1000)
    stock = add_stock(price=10)
    settlement.execute(acct, stock, "BUY", 30)
    before = snapshot(SessionLocal, acct, stock)
    assert before == (Decimal("700"), (30, Decimal("10"), Decimal("300")), 1)

    reject_trade_rows(monkeypatch)
    with pytest.raises(StorageFailure, match="Trade could not be recorded"):
        settlement.execute(acct, stock, side, quantity)

    assert snapshot(SessionLocal, acct, stock) == before


def test_account_locks_are_dropped_after_use(settlement, add_stock, add_account):
    stock = add_stock()
    with pytest.raises(NotFound):
        settlement.execute(424242, stock, "BUY", 1)
    assert len(settlement.locks) == 0

    acct = add_account()
    settlement.execute(acct, stock, "BUY", 1)
    assert len(settlement.locks) == 0


def test_account_lock_lives_while_held():
    locks = AccountLocks()
    with locks.hold(1):
        with locks.hold(2):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0


def test_engine_keeps_injected_locks(SessionLocal):
    locks = AccountLocks()
    assert settlement_module.SettlementEngine(SessionLocal, locks).locks is locks
