import pytest
from fastapi.testclient import TestClient

from stockdesk import ledger
from stockdesk.config import Settings
from stockdesk.db import init_db, make_engine, make_session_factory
from stockdesk.main import create_app
from stockdesk.settlement import SettlementEngine


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'stockdesk.db'}"


@pytest.fixture
def engine(database_url):
    engine = make_engine(database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def SessionLocal(engine):
    return make_session_factory(engine)


@pytest.fixture
def settlement(SessionLocal):
    return SettlementEngine(SessionLocal)


@pytest.fixture
def add_stock(SessionLocal):
    def _add(symbol="ACME", price=10, sector="Technology", **kwargs):
        with SessionLocal() as db, db.begin():
            stock = ledger.create_stock(
                db, symbol=symbol, name=f"{symbol} Corp", sector=sector, price=price, **kwargs
            )
            return stock.id
    return _add


@pytest.fixture
def add_account(SessionLocal):
    def _add(username="alice", balance=1000):
        with SessionLocal() as db, db.begin():
            return ledger.create_account(db, username, balance).id
    return _add


@pytest.fixture
def client(database_url):
    app = create_app(Settings(database_url=database_url))
    with TestClient(app) as c:
        yield c
