from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import List, Optional, Union

CellValue = Union[None, bool, int, float, str]

class ContractType(str, Enum):
    CALL = "CALL"
    PUT = "PUT"

class Candle(BaseModel):
    """One price-history bar as returned by the market data API"""
    model_config = ConfigDict(populate_by_name=True)

    open: float = Field(default=0.0, ge=0)
    high: float = Field(default=0.0, ge=0)
    low: float = Field(default=0.0, ge=0)
    close: float = Field(ge=0)
    volume: float = Field(ge=0)
    timestamp: datetime = Field(alias="datetime")  # epoch ms on the wire

class PriceHistorySummary(BaseModel):
    volume_weighted_average: float
    sum_squared_deviation: float
    variance: float
    std_dev: float
    volatility: float

class Quote(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    bid_price: float = Field(default=0.0, alias="bidPrice")
    last_price: float = Field(default=0.0, alias="lastPrice")
    close_price: float = Field(default=0.0, alias="closePrice")
    trade_time: Optional[datetime] = Field(default=None, alias="tradeTime")

class OptionContract(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str = ""
    strike: float = Field(alias="strikePrice")
    bid: float = 0.0
    ask: float = 0.0
    last: float = 0.0
    expiration_date: str = Field(alias="expirationDate")
    days_to_expiration: int = Field(ge=0, alias="daysToExpiration")
    in_the_money: bool = Field(default=False, alias="inTheMoney")
    volume: float = Field(default=0.0, alias="totalVolume")
    implied_vol: Optional[float] = Field(default=None, alias="volatility")

    @property
    def spread(self) -> float:
        return self.ask - self.bid

class AnalyticsParameters(BaseModel):
    """Latest successfully fetched pricing inputs for one symbol"""
    last_bid: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    volatility: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    risk_free_rate: float = Field(default=0.0, allow_inf_nan=False)

class SpreadsheetUpdate(BaseModel):
    """A rectangular block of cells written at (row_index, column_index) of one sheet"""
    sheet_name: str
    row_index: int = Field(default=0, ge=0)
    column_index: int = Field(default=0, ge=0)
    values: List[List[CellValue]]

    @field_validator("values")
    @classmethod
    def pad_rows(cls, rows):
        # Short rows are padded with empty cells so the grid stays rectangular
        width = max((len(row) for row in rows), default=0)
        return [list(row) + [None] * (width - len(row)) for row in rows]

    @property
    def width(self) -> int:
        return len(self.values[0]) if self.values else 0
