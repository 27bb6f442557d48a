from typing import List, Optional, Sequence

from optrack.config import settings
from optrack.core.analytics import PricingError, option_price
from optrack.core.collector import Collector
from optrack.core.logger import logger
from optrack.core.models import AnalyticsParameters, CellValue, ContractType, OptionContract, SpreadsheetUpdate
from optrack.core.params import ParameterStore

OPTION_HEADER = [
    "Expiration Date", "Strike", "Bid", "Ask", "Last", "Volume", "Volatility", "Spread",
    "Description", "Days To Expiration", "In The Money", "Black-Scholes Price", "Diff",
]

class OptionChainCollector(Collector):
    """
    Near-dated option chain for one side (CALL or PUT). Each contract is
    priced with the symbol's current parameters and compared to the ask.
    """
    def __init__(self, symbols: Sequence[str], market_data, store: ParameterStore, writer,
                 contract_type: ContractType = ContractType.CALL, dividend_yield: Optional[float] = None):
        super().__init__(symbols, market_data, store, writer)
        self.contract_type = ContractType(contract_type)
        self.dividend_yield = settings.DIVIDEND_YIELD if dividend_yield is None else dividend_yield
        self.name = f"option_chain_{self.contract_type.value.lower()}"

    async def fetch(self, symbol: str) -> List[OptionContract]:
        return await self.market_data.get_option_chain(symbol, self.contract_type)

    def model_price(self, params: AnalyticsParameters, option: OptionContract) -> Optional[float]:
        """Black-Scholes price, or None while spot/volatility have not been published yet"""
        try:
            return option_price(
                params.last_bid,
                option.strike,
                params.volatility,
                params.risk_free_rate,
                self.dividend_yield,
                option.days_to_expiration,
                self.contract_type,
            )
        except PricingError:
            return None

    def to_row(self, params: AnalyticsParameters, option: OptionContract) -> List[CellValue]:
        price = self.model_price(params, option)
        return [
            option.expiration_date[:10],
            option.strike,
            option.bid,
            option.ask,
            option.last,
            option.volume,
            option.implied_vol,
            option.spread,
            option.description,
            option.days_to_expiration,
            "Yes" if option.in_the_money else "No",
            price,
            None if price is None else price - option.ask,
        ]

    def transform(self, symbol: str, contracts: List[OptionContract]) -> List[SpreadsheetUpdate]:
        # One snapshot per symbol so every row is priced from the same inputs
        params = self.store.get(symbol)
        rows = [self.to_row(params, option) for option in contracts]

        unpriced = sum(1 for row in rows if row[11] is None)
        if unpriced:
            logger.warning(
                f"[{self.name}] {symbol}: {unpriced}/{len(rows)} contract(s) not priced "
                f"(last_bid={params.last_bid}, volatility={params.volatility})",
                extra={"symbol": symbol},
            )

        values = [self.last_updated_row(), OPTION_HEADER] + rows
        return [SpreadsheetUpdate(sheet_name=f"{symbol} {self.contract_type.value}", values=values)]
