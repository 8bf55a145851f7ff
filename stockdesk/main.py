import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from stockdesk import ledger, pricing
from stockdesk.config import Settings, load_settings
from stockdesk.db import init_db, make_engine, make_session_factory
from stockdesk.errors import StorageFailure, TradingError
from stockdesk.portfolio import portfolio_performance, portfolio_summary
from stockdesk.pricing import QuoteCache
from stockdesk.schemas import AccountIn, PriceIn, StockIn, TradeIn
from stockdesk.settlement import SettlementEngine

logger = logging.getLogger(__name__)

router = APIRouter()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def current_account_id(x_account_id: Optional[int] = Header(default=None)) -> int:
    # identity is established upstream; the header is trusted as-is
    if x_account_id is None:
        raise HTTPException(status_code=401, detail="Missing X-Account-Id header")
    return x_account_id


def _sessions(request: Request):
    return request.app.state.SessionLocal()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.get("/health")
def health():
    return {"status": "ok"}


# --- stocks -----------------------------------------------------------------

@router.get("/stocks")
def list_stocks(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    sector: Optional[str] = None,
):
    with _sessions(request) as db:
        result = ledger.list_stocks(db, search=search, sector=sector, page=page, limit=limit)
        return {
            "success": True,
            "stocks": [s.to_dict() for s in result.items],
            "totalPages": result.total_pages,
            "currentPage": result.page,
            "total": result.total,
        }


@router.get("/stocks/data/sectors")
def list_sectors(request: Request):
    def load():
        with _sessions(request) as db:
            return ledger.list_sectors(db)

    sectors, _ = request.app.state.quotes.get("sectors", load)
    return {"success": True, "sectors": sectors}


@router.get("/stocks/symbol/{symbol}")
def get_stock_by_symbol(symbol: str, request: Request):
    sym = symbol.upper().strip()

    def load():
        with _sessions(request) as db:
            return ledger.get_stock_by_symbol(db, sym).to_dict()

    stock, source = request.app.state.quotes.get(("symbol", sym), load)
    return {"success": True, "source": source, "stock": stock}


@router.get("/stocks/{stock_id}")
def get_stock(stock_id: int, request: Request):
    def load():
        with _sessions(request) as db:
            return ledger.get_stock(db, stock_id).to_dict()

    stock, source = request.app.state.quotes.get(("id", stock_id), load)
    return {"success": True, "source": source, "stock": stock}


@router.post("/stocks", status_code=201)
def create_stock(s: StockIn, request: Request):
    with _sessions(request) as db, db.begin():
        stock = ledger.create_stock(
            db,
            symbol=s.symbol,
            name=s.name,
            sector=s.sector,
            price=s.price,
            opening_price=s.openingPrice,
            high=s.high,
            low=s.low,
            volume=s.volume,
            market_cap=s.marketCap,
            description=s.description,
        )
        payload = stock.to_dict()
    request.app.state.quotes.invalidate("sectors")
    return {"success": True, "stock": payload}


@router.patch("/stocks/{stock_id}/price")
def update_price(stock_id: int, p: PriceIn, request: Request):
    with _sessions(request) as db, db.begin():
        stock = pricing.set_price(db, stock_id, p.price)
        payload = stock.to_dict()
    request.app.state.quotes.invalidate(("id", stock_id), ("symbol", payload["symbol"]))
    return {"success": True, "stock": payload}


# --- accounts ---------------------------------------------------------------

@router.post("/accounts", status_code=201)
def register(a: AccountIn, request: Request):
    settings: Settings = request.app.state.settings
    balance = a.balance if a.balance is not None else settings.starting_balance
    with _sessions(request) as db, db.begin():
        account = ledger.create_account(db, a.username, balance)
        payload = account.to_dict()
    return {"success": True, "account": payload}


@router.get("/accounts/me")
def me(request: Request, account_id: int = Depends(current_account_id)):
    with _sessions(request) as db:
        return {"success": True, "account": ledger.get_account(db, account_id).to_dict()}


# --- trades -----------------------------------------------------------------

@router.post("/trades/execute")
def execute_trade(t: TradeIn, request: Request, account_id: int = Depends(current_account_id)):
    result = request.app.state.settlement.execute(account_id, t.stockId, t.type, t.quantity)
    return {"success": True, "trade": result.trade, "newBalance": float(result.new_balance)}


@router.get("/trades/my-trades")
def my_trades(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    account_id: int = Depends(current_account_id),
):
    with _sessions(request) as db:
        result = ledger.list_trades(db, account_id, page=page, limit=limit)
        return {
            "success": True,
            "trades": [t.to_dict() for t in result.items],
            "totalPages": result.total_pages,
            "currentPage": result.page,
            "total": result.total,
        }


# --- portfolio --------------------------------------------------------------

@router.get("/portfolio/my-portfolio")
def my_portfolio(request: Request, account_id: int = Depends(current_account_id)):
    with _sessions(request) as db:
        return {"success": True, **portfolio_summary(db, account_id)}


@router.get("/portfolio/performance")
def performance(request: Request, account_id: int = Depends(current_account_id)):
    with _sessions(request) as db:
        return {"success": True, "performance": portfolio_performance(db, account_id)}


# --- app --------------------------------------------------------------------

def _install_handlers(app: FastAPI) -> None:
    @app.exception_handler(TradingError)
    async def trading_error(request: Request, exc: TradingError):
        if isinstance(exc, StorageFailure):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(SQLAlchemyError)
    async def storage_error(request: Request, exc: SQLAlchemyError):
        logger.error("%s %s storage error", request.method, request.url.path, exc_info=exc)
        return _error(500, "Storage failure")

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
        )
        return _error(400, problems or "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(settings.database_url)
        init_db(engine)
        app.state.engine = engine
        app.state.SessionLocal = make_session_factory(engine)
        app.state.settlement = SettlementEngine(app.state.SessionLocal)
        app.state.quotes = QuoteCache(maxsize=settings.quote_cache_size, ttl=settings.quote_cache_ttl)
        logger.info("Connected to %s", engine.url.render_as_string(hide_password=True))
        yield
        engine.dispose()
        logger.info("Database connections closed")

    app = FastAPI(title="Stockdesk Trading Service", lifespan=lifespan)
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method, request.url.path, response.status_code, (time.time() - start) * 1000,
        )
        return response

    _install_handlers(app)
    app.include_router(router)
    return app


def run() -> None:
    import uvicorn

    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


app = create_app()
