from typing import List

from optrack.core.collector import Collector
from optrack.core.models import Quote, SpreadsheetUpdate

class QuoteCollector(Collector):
    """Last bid per underlying; feeds the spot price used for option pricing"""
    name = "quotes"

    async def fetch(self, symbol: str) -> Quote:
        return await self.market_data.get_quote(symbol)

    def transform(self, symbol: str, quote: Quote) -> List[SpreadsheetUpdate]:
        self.store.set_last_bid(symbol, quote.bid_price)

        trade_time = self.format_timestamp(quote.trade_time) if quote.trade_time else None
        rows = [
            self.last_updated_row(),
            ["Last Bid", quote.bid_price],
            ["Last Bid Time", trade_time],
            ["Previous Close", quote.close_price],
        ]
        return [SpreadsheetUpdate(sheet_name=f"{symbol} Last Bid", values=rows)]
