from typing import List

from optrack.core.analytics import VolatilityEstimateError, estimate_volatility
from optrack.core.collector import Collector
from optrack.core.logger import logger
from optrack.core.models import Candle, SpreadsheetUpdate

SUMMARY_HEADER = ["Average Price", "SumDiffSquared", "Variance", "Standard Deviation", "Volatility", "Fudged Volatility"]
CANDLE_HEADER = ["Date", "Close", "Volume"]

class PriceHistoryCollector(Collector):
    """
    Pulls a few days of 1-minute candles per symbol, recomputes the volume
    weighted volatility from that fetch alone and publishes it.
    """
    name = "price_history"

    async def fetch(self, symbol: str) -> List[Candle]:
        return await self.market_data.get_price_history(symbol)

    def transform(self, symbol: str, candles: List[Candle]) -> List[SpreadsheetUpdate]:
        try:
            summary = estimate_volatility(candles)
        except VolatilityEstimateError as e:
            # Candles are still written; the summary row is cleared and the store keeps its value
            logger.warning(f"[{self.name}] {symbol} volatility not published: {e}", extra={"symbol": symbol})
            summary_row = [None] * len(SUMMARY_HEADER)
        else:
            # Hook for a manual adjustment; currently the raw estimate
            fudged_volatility = summary.volatility
            self.store.set_volatility(symbol, fudged_volatility)
            summary_row = [
                summary.volume_weighted_average,
                summary.sum_squared_deviation,
                summary.variance,
                summary.std_dev,
                summary.volatility,
                fudged_volatility,
            ]

        rows = [self.last_updated_row(), SUMMARY_HEADER, summary_row, CANDLE_HEADER]
        rows.extend(
            [c.timestamp.astimezone(self.tz).strftime("%Y-%m-%d %H:%M"), c.close, c.volume]
            for c in candles
            if c.close != 0
        )
        return [SpreadsheetUpdate(sheet_name=f"{symbol} Price History", values=rows)]
