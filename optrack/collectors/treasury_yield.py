from typing import Any, Dict, List, Optional, Sequence

from optrack.config import settings
from optrack.core.collector import Collector
from optrack.core.models import Quote, SpreadsheetUpdate
from optrack.core.params import ParameterStore

# Row 6 of each "<symbol> Last Bid" sheet, below the quote block
YIELD_ROW_INDEX = 5

class YieldCollector(Collector):
    """
    Quotes the 10 year treasury yield instrument and publishes the rate as
    the risk-free rate of every tracked underlying.
    """
    name = "treasury_yield"

    def __init__(self, symbols: Sequence[str], market_data, store: ParameterStore, writer,
                 treasury_symbol: Optional[str] = None, divisor: Optional[float] = None):
        super().__init__(symbols, market_data, store, writer)
        self.treasury_symbol = treasury_symbol or settings.TREASURY_SYMBOL
        self.divisor = divisor or settings.TREASURY_YIELD_DIVISOR

    async def fetch(self, symbol: str) -> Quote:
        return await self.market_data.get_quote(self.treasury_symbol)

    async def process(self, symbol: str, cycle: Dict[str, Any]) -> List[SpreadsheetUpdate]:
        # One treasury quote serves every tracked symbol in this tick; a failed fetch is retried by the next symbol
        if "rate" not in cycle:
            quote = await self.fetch(symbol)
            cycle["rate"] = quote.last_price / self.divisor
        return self.transform(symbol, cycle["rate"])

    def transform(self, symbol: str, rate: float) -> List[SpreadsheetUpdate]:
        self.store.set_risk_free_rate(symbol, rate)

        rows = [[f"Interest 10 Year Treasury Bond ({self.format_timestamp()})", rate]]
        return [SpreadsheetUpdate(sheet_name=f"{symbol} Last Bid", row_index=YIELD_ROW_INDEX, values=rows)]
