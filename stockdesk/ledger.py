"""Persistence helpers for stocks, accounts, positions and trades.

Every function takes an open SQLAlchemy session and leaves transaction control
to the caller. Lookups that must find a row raise ``NotFound``; uniqueness
violations come back as ``InvalidInput``.
"""
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockdesk.errors import InvalidInput, NotFound
from stockdesk.models import Account, Position, Stock, Trade, money, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _like_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _check_paging(page: int, limit: int) -> None:
    if page < 1 or limit < 1:
        raise InvalidInput("page and limit must be positive")


def _flush_unique(db: Session, what: str) -> None:
    try:
        db.flush()
    except IntegrityError as e:
        raise InvalidInput(f"{what} already exists") from e


# --- stocks -----------------------------------------------------------------

def create_stock(
    db: Session,
    symbol: str,
    name: str,
    sector: str,
    price,
    opening_price=None,
    high=None,
    low=None,
    volume: int = 0,
    market_cap=0,
    description: str = "",
) -> Stock:
    sym = (symbol or "").upper().strip()
    if not sym:
        raise InvalidInput("Symbol required")
    price = money(price)
    opening = money(opening_price if opening_price is not None else price)
    if price <= 0 or opening <= 0:
        raise InvalidInput("Prices must be positive")
    high = money(high) if high is not None else max(price, opening)
    low = money(low) if low is not None else min(price, opening)
    if high < max(price, opening) or low > min(price, opening):
        raise InvalidInput("high/low must bracket the current and opening price")

    stock = Stock(
        symbol=sym,
        name=name.strip(),
        sector=sector.strip(),
        current_price=price,
        opening_price=opening,
        high=high,
        low=low,
        volume=volume,
        market_cap=Decimal(str(market_cap)),
        description=description,
        last_updated=utcnow(),
    )
    db.add(stock)
    _flush_unique(db, f"Stock {sym}")
    logger.info("Listed stock %s (%s) at %s", sym, stock.name, price)
    return stock


def get_stock(db: Session, stock_id: int, for_update: bool = False) -> Stock:
    stmt = select(Stock).where(Stock.id == stock_id)
    if for_update:
        stmt = stmt.with_for_update()
    stock = db.execute(stmt).scalar_one_or_none()
    if stock is None:
        raise NotFound("Stock not found")
    return stock


def get_stock_by_symbol(db: Session, symbol: str) -> Stock:
    sym = symbol.upper().strip()
    stock = db.execute(select(Stock).where(Stock.symbol == sym)).scalar_one_or_none()
    if stock is None:
        raise NotFound("Stock not found")
    return stock


def list_stocks(
    db: Session,
    search: Optional[str] = None,
    sector: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Page:
    _check_paging(page, limit)
    stmt = select(Stock)
    if search:
        pattern = f"%{_like_escape(search.lower())}%"
        stmt = stmt.where(or_(
            func.lower(Stock.symbol).like(pattern, escape="\\"),
            func.lower(Stock.name).like(pattern, escape="\\"),
        ))
    if sector:
        stmt = stmt.where(Stock.sector == sector)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(Stock.symbol).limit(limit).offset((page - 1) * limit)
    ).scalars().all()
    return Page(items=list(rows), total=total, page=page, limit=limit)


def list_sectors(db: Session) -> List[str]:
    return list(db.execute(select(Stock.sector).distinct().order_by(Stock.sector)).scalars().all())


# --- accounts ---------------------------------------------------------------

def create_account(db: Session, username: str, balance) -> Account:
    name = (username or "").strip()
    if not name:
        raise InvalidInput("Username required")
    balance = money(balance)
    if balance < 0:
        raise InvalidInput("Balance cannot be negative")

    account = Account(username=name, balance=balance)
    db.add(account)
    _flush_unique(db, f"Account {name}")
    logger.info("Opened account %s for %s with balance %s", account.id, name, balance)
    return account


def get_account(db: Session, account_id: int, for_update: bool = False) -> Account:
    stmt = select(Account).where(Account.id == account_id)
    if for_update:
        stmt = stmt.with_for_update()
    account = db.execute(stmt).scalar_one_or_none()
    if account is None:
        raise NotFound("Account not found")
    return account


# --- positions --------------------------------------------------------------

def get_position(db: Session, account_id: int, stock_id: int, for_update: bool = False) -> Optional[Position]:
    stmt = select(Position).where(Position.account_id == account_id, Position.stock_id == stock_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def list_positions(db: Session, account_id: int) -> List[Position]:
    stmt = (
        select(Position)
        .join(Stock, Position.stock_id == Stock.id)
        .where(Position.account_id == account_id)
        .order_by(Stock.symbol)
    )
    return list(db.execute(stmt).scalars().all())


# --- trades -----------------------------------------------------------------

def count_trades(db: Session, account_id: int) -> int:
    return db.execute(
        select(func.count()).select_from(Trade).where(Trade.account_id == account_id)
    ).scalar_one()


def list_trades(db: Session, account_id: int, page: int = 1, limit: int = 20) -> Page:
    _check_paging(page, limit)
    rows = db.execute(
        select(Trade)
        .where(Trade.account_id == account_id)
        .order_by(Trade.executed_at.desc(), Trade.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()
    return Page(items=list(rows), total=count_trades(db, account_id), page=page, limit=limit)
