from typing import Optional

from pydantic import BaseModel, Field, StrictInt


class TradeIn(BaseModel):
    stockId: int
    type: str
    # JSON true, 2.0 and "2" are not share counts
    quantity: StrictInt


class PriceIn(BaseModel):
    price: float = Field(gt=0)


class StockIn(BaseModel):
    symbol: str = Field(min_length=1, max_length=10)
    name: str = Field(min_length=1, max_length=128)
    sector: str = Field(min_length=1, max_length=64)
    price: float = Field(gt=0)
    openingPrice: Optional[float] = Field(default=None, gt=0)
    high: Optional[float] = Field(default=None, gt=0)
    low: Optional[float] = Field(default=None, gt=0)
    volume: int = Field(default=0, ge=0)
    marketCap: float = Field(default=0, ge=0)
    description: str = ""


class AccountIn(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    balance: Optional[float] = Field(default=None, ge=0)
