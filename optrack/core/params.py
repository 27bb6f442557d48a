import threading
from typing import Dict, Iterable, List

from optrack.core.models import AnalyticsParameters

class ParameterStore:
    """
    Per-symbol pricing inputs shared by every collector.

    Each field holds the latest successful fetch; a failed fetch simply never
    calls update, so the previous value stays. Reads hand out copies and all
    access goes through one lock, so a reader never sees a half-applied update
    even if collectors run on threads.
    """
    def __init__(self, symbols: Iterable[str]):
        self._params: Dict[str, AnalyticsParameters] = {s: AnalyticsParameters() for s in symbols}
        self._lock = threading.Lock()

    @property
    def symbols(self) -> List[str]:
        return list(self._params)

    def get(self, symbol: str) -> AnalyticsParameters:
        with self._lock:
            return self._params[symbol].model_copy()

    def update(self, symbol: str, **fields) -> AnalyticsParameters:
        """
        Replace some fields of a symbol's record.
        Raises KeyError for untracked symbols and ValueError (pydantic) for
        negative or non-finite values; the stored record is untouched then.
        """
        with self._lock:
            current = self._params[symbol]
            updated = AnalyticsParameters(**{**current.model_dump(), **fields})
            self._params[symbol] = updated
            return updated.model_copy()

    def set_last_bid(self, symbol: str, last_bid: float) -> AnalyticsParameters:
        return self.update(symbol, last_bid=last_bid)

    def set_volatility(self, symbol: str, volatility: float) -> AnalyticsParameters:
        return self.update(symbol, volatility=volatility)

    def set_risk_free_rate(self, symbol: str, rate: float) -> AnalyticsParameters:
        return self.update(symbol, risk_free_rate=rate)

    def snapshot(self) -> Dict[str, AnalyticsParameters]:
        with self._lock:
            return {s: p.model_copy() for s, p in self._params.items()}
