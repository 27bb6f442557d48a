from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from optrack.config import settings
from optrack.core.logger import logger
from optrack.core.models import SpreadsheetUpdate
from optrack.core.params import ParameterStore

class CollectorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"

class Collector:
    """
    Base collector. One tick walks the symbol list in order:
    fetch -> transform -> publish, then hands every produced block to the
    writer in a single call. A symbol whose fetch or transform fails is logged
    and skipped; the rest of the tick carries on.
    """
    name = "collector"

    def __init__(self, symbols: Sequence[str], market_data, store: ParameterStore, writer):
        self.symbols = list(symbols)
        self.market_data = market_data
        self.store = store
        self.writer = writer
        self.tz = ZoneInfo(settings.MARKET_TIMEZONE)
        self.state = CollectorState.IDLE
        self.failures = 0

    async def fetch(self, symbol: str) -> Any:
        """Override in subclass"""
        raise NotImplementedError

    def transform(self, symbol: str, payload: Any) -> List[SpreadsheetUpdate]:
        """Override in subclass. May mutate the parameter store."""
        raise NotImplementedError

    async def process(self, symbol: str, cycle: Dict[str, Any]) -> List[SpreadsheetUpdate]:
        """One symbol of a tick. `cycle` is scratch state shared by the symbols of a single tick only."""
        payload = await self.fetch(symbol)
        return self.transform(symbol, payload)

    async def tick(self) -> List[SpreadsheetUpdate]:
        self.state = CollectorState.RUNNING
        updates: List[SpreadsheetUpdate] = []
        cycle: Dict[str, Any] = {}
        try:
            for symbol in self.symbols:
                try:
                    updates.extend(await self.process(symbol, cycle))
                except Exception as e:
                    self.failures += 1
                    logger.error(
                        f"[{self.name}] {symbol} skipped: {e}",
                        exc_info=True,
                        extra={"collector": self.name, "symbol": symbol},
                    )

            if updates:
                await self.writer.write(updates)
            logger.debug(f"[{self.name}] tick produced {len(updates)} update(s)")
            return updates
        finally:
            self.state = CollectorState.IDLE

    # --- Sheet helpers ---

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def format_timestamp(self, moment: Optional[datetime] = None) -> str:
        moment = (moment or self.now()).astimezone(self.tz)
        return moment.strftime("%a %b %d %Y %H:%M:%S %Z")

    def last_updated_row(self) -> List[str]:
        return [f"Last Updated {self.format_timestamp()}"]
