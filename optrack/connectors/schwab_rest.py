import time
import urllib.parse
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo
import httpx
from optrack.config import settings
from optrack.core.logger import logger
from optrack.core.models import Candle, ContractType, OptionContract, Quote

class SchwabMarketDataREST:
    def __init__(self, token_provider: Callable[[], str], client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.MARKET_DATA_BASE_URL
        # Read on every call so a refreshed token is picked up without coordination
        self.token_provider = token_provider
        self.market_tz = ZoneInfo(settings.MARKET_TIMEZONE)
        self.price_history_days = settings.PRICE_HISTORY_DAYS
        self.strike_count = settings.OPTION_STRIKE_COUNT
        self.window_days = settings.OPTION_WINDOW_DAYS
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=settings.HTTP_TIMEOUT)

    async def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None):
        headers = {"Authorization": f"Bearer {self.token_provider()}"}

        try:
            response = await self.client.get(endpoint, params=params, headers=headers)

            if response.status_code >= 400:
                logger.error(f"Market Data API Error {response.status_code}: {response.text}")

            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP Error: {e}")
            raise

    async def get_price_history(self, symbol: str) -> List[Candle]:
        """1-minute candles for the last few trading days, extended hours included"""
        data = await self._request("/pricehistory", {
            "symbol": symbol,
            "periodType": "day",
            "period": self.price_history_days,
            "frequencyType": "minute",
            "frequency": 1,
            "endDate": int(time.time() * 1000),
            "needExtendedHoursData": "true",
            "needPreviousClose": "false",
        })
        return [Candle.model_validate(c) for c in (data or {}).get("candles", [])]

    async def get_quote(self, symbol: str) -> Quote:
        """Quote block for one symbol. Raises KeyError if the payload does not carry it."""
        data = await self._request(f"/{urllib.parse.quote(symbol, safe='')}/quotes", {"fields": "quote"})
        entry = data[symbol]
        return Quote.model_validate({"symbol": symbol, **entry["quote"]})

    async def get_option_chain(self, symbol: str, contract_type: ContractType) -> List[OptionContract]:
        """Contracts expiring within the forward window, flattened across expiries and strikes"""
        today = datetime.now(self.market_tz).date()
        data = await self._request("/chains", {
            "symbol": symbol,
            "contractType": contract_type.value,
            "strikeCount": self.strike_count,
            "includeUnderlyingQuote": "false",
            "fromDate": today.isoformat(),
            "toDate": (today + timedelta(days=self.window_days)).isoformat(),
        })

        exp_date_map = (data or {}).get(
            "callExpDateMap" if contract_type is ContractType.CALL else "putExpDateMap", {}
        )
        contracts = []
        for strike_map in exp_date_map.values():
            for options in strike_map.values():
                contracts.extend(OptionContract.model_validate(o) for o in options)
        return contracts

    async def close(self):
        await self.client.aclose()
