from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MONEY = Decimal("0.0001")

BUY = "BUY"
SELL = "SELL"
TRADE_SIDES = (BUY, SELL)


def money(value) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts):
    return ts.isoformat() if ts is not None else None


class Account(Base):
    __tablename__ = "accounts"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, index=True, nullable=False)
    balance = Column(Numeric(14, 4), nullable=False, default=0)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    positions = relationship("Position", back_populates="account")
    trades = relationship("Trade", back_populates="account")

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_account_balance_non_negative"),)
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "balance": float(self.balance),
            "createdAt": _iso(self.created_at),
        }


class Stock(Base):
    __tablename__ = "stocks"
    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String(10), unique=True, index=True, nullable=False)
    name = Column(String(128), nullable=False)
    sector = Column(String(64), index=True, nullable=False)
    current_price = Column(Numeric(14, 4), nullable=False)
    opening_price = Column(Numeric(14, 4), nullable=False)
    high = Column(Numeric(14, 4), nullable=False)
    low = Column(Numeric(14, 4), nullable=False)
    volume = Column(BigInteger, nullable=False, default=0)
    market_cap = Column(Numeric(20, 2), nullable=False, default=0)
    description = Column(Text, nullable=False, default="")
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("current_price >= 0", name="ck_stock_price_non_negative"),
        CheckConstraint("opening_price >= 0", name="ck_stock_opening_non_negative"),
    )

    @property
    def change(self) -> Decimal:
        return Decimal(self.current_price) - Decimal(self.opening_price)

    @property
    def change_percent(self) -> Decimal:
        if not self.opening_price:
            return Decimal(0)
        return self.change / Decimal(self.opening_price) * 100

    def to_dict(self):
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "sector": self.sector,
            "currentPrice": float(self.current_price),
            "openingPrice": float(self.opening_price),
            "high": float(self.high),
            "low": float(self.low),
            "volume": int(self.volume or 0),
            "change": float(self.change),
            "changePercent": float(self.change_percent),
            "marketCap": float(self.market_cap or 0),
            "description": self.description or "",
            "lastUpdated": _iso(self.last_updated),
        }


class Position(Base):
    __tablename__ = "positions"
    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    stock_id = Column(Integer, ForeignKey("stocks.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    average_price = Column(Numeric(14, 4), nullable=False)
    total_investment = Column(Numeric(14, 4), nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    account = relationship("Account", back_populates="positions")
    stock = relationship("Stock")

    __table_args__ = (
        UniqueConstraint("account_id", "stock_id", name="uq_position_account_stock"),
        CheckConstraint("quantity >= 0", name="ck_position_quantity_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def current_value(self) -> Decimal:
        return self.quantity * Decimal(self.stock.current_price or 0)

    @property
    def profit_loss(self) -> Decimal:
        return self.current_value - Decimal(self.total_investment)

    @property
    def profit_loss_percent(self) -> Decimal:
        if not self.total_investment:
            return Decimal(0)
        return self.profit_loss / Decimal(self.total_investment) * 100

    @property
    def today_pl(self) -> Decimal:
        return self.quantity * self.stock.change

    def to_dict(self):
        return {
            "id": self.id,
            "accountId": self.account_id,
            "stock": {
                "id": self.stock.id,
                "symbol": self.stock.symbol,
                "name": self.stock.name,
                "currentPrice": float(self.stock.current_price),
                "change": float(self.stock.change),
                "changePercent": float(self.stock.change_percent),
            },
            "quantity": self.quantity,
            "averagePrice": float(self.average_price),
            "totalInvestment": float(self.total_investment),
            "currentValue": float(self.current_value),
            "profitLoss": float(self.profit_loss),
            "profitLossPercent": float(self.profit_loss_percent),
            "todayPL": float(self.today_pl),
        }


class Trade(Base):
    # append-only; rows are never updated after insert
    __tablename__ = "trades"
    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    stock_id = Column(Integer, ForeignKey("stocks.id"), nullable=False, index=True)
    side = Column(String(4), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(14, 4), nullable=False)
    status = Column(String(10), nullable=False, default="COMPLETED")
    executed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    account = relationship("Account", back_populates="trades")
    stock = relationship("Stock")

    __table_args__ = (
        CheckConstraint("side IN ('BUY', 'SELL')", name="ck_trade_side"),
        CheckConstraint("quantity >= 1", name="ck_trade_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_trade_price_non_negative"),
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'CANCELLED')", name="ck_trade_status"
        ),
    )

    @property
    def total_amount(self) -> Decimal:
        return self.quantity * Decimal(self.price)

    def to_dict(self):
        return {
            "id": self.id,
            "accountId": self.account_id,
            "stock": {"id": self.stock.id, "symbol": self.stock.symbol, "name": self.stock.name},
            "type": self.side,
            "quantity": self.quantity,
            "price": float(self.price),
            "totalAmount": float(self.total_amount),
            "status": self.status,
            "executedAt": _iso(self.executed_at),
        }
