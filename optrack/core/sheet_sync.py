import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple, TypeVar

from optrack.config import settings
from optrack.connectors.google_sheets import GoogleSheetsREST, SheetsRateLimitError
from optrack.core.batcher import UpdateBatcher
from optrack.core.logger import logger
from optrack.core.models import SpreadsheetUpdate

T = TypeVar("T")

class SheetNotFoundError(KeyError):
    """Target sheet title is not present in the spreadsheet"""

class SheetIdCache:
    """
    Read-through (spreadsheet id, sheet title) -> sheetId map.

    Metadata is fetched on the first miss for a title and every known title
    of that spreadsheet is cached from the same response. Entries are never
    invalidated, so a renamed or deleted sheet keeps its old id until restart.
    """
    def __init__(self, fetch_sheet_ids: Callable[[str], Awaitable[Dict[str, int]]]):
        self._fetch = fetch_sheet_ids
        self._ids: Dict[Tuple[str, str], int] = {}
        self._lock = asyncio.Lock()
        self.lookups = 0

    async def resolve(self, spreadsheet_id: str, sheet_name: str) -> Optional[int]:
        key = (spreadsheet_id, sheet_name)
        if key in self._ids:
            return self._ids[key]

        async with self._lock:
            # Another tick may have filled it while we waited
            if key not in self._ids:
                self.lookups += 1
                ids = await self._fetch(spreadsheet_id)
                if ids is None:
                    return None
                for title, sheet_id in ids.items():
                    self._ids[(spreadsheet_id, title)] = sheet_id
                logger.info(f"Cached {len(ids)} sheet id(s) for spreadsheet {spreadsheet_id}")

        if key not in self._ids:
            raise SheetNotFoundError(f"Sheet '{sheet_name}' not found in spreadsheet {spreadsheet_id}")
        return self._ids[key]

    def __len__(self):
        return len(self._ids)

class SheetSyncWriter:
    """Writes one tick's updates as a single batchUpdate, retrying only on rate limits"""
    def __init__(
        self,
        sheets: GoogleSheetsREST,
        spreadsheet_id: Optional[str] = None,
        batcher: Optional[UpdateBatcher] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        jitter: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.sheets = sheets
        self.spreadsheet_id = spreadsheet_id or settings.GOOGLE_SHEET_ID
        self.batcher = batcher or UpdateBatcher()
        self.max_retries = settings.SHEETS_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = settings.SHEETS_RETRY_BASE_DELAY if base_delay is None else base_delay
        self.jitter = settings.SHEETS_RETRY_JITTER if jitter is None else jitter
        self._sleep = sleep
        self.cache = SheetIdCache(lambda sid: self.call_with_retry(lambda: self.sheets.get_sheet_ids(sid)))

    def backoff_delay(self, retry: int) -> float:
        """Seconds to wait before retry number `retry + 1`"""
        return retry + self.base_delay + random.random() * self.jitter

    async def call_with_retry(self, fn: Callable[[], Awaitable[T]]) -> Optional[T]:
        """
        Await fn() until it stops raising SheetsRateLimitError.
        Gives up after max_retries retries (max_retries + 1 attempts) and
        returns None. Any other exception propagates on the first attempt.
        """
        retry = 0
        while True:
            try:
                return await fn()
            except SheetsRateLimitError:
                if retry >= self.max_retries:
                    logger.error(
                        "Exceeded maximum number of retries for spreadsheet request... skipping",
                        extra={"attempts": retry + 1},
                    )
                    return None

                delay = self.backoff_delay(retry)
                logger.warning(f"Too many requests to spreadsheet API. Retrying in {delay:.2f}s", extra={"retry": retry + 1})
                await self._sleep(delay)
                retry += 1

    async def write(self, updates: Sequence[SpreadsheetUpdate]):
        """Resolve target sheets, build one batch and send it. Returns the API response or None if abandoned."""
        if not updates:
            return None

        sheet_ids = {}
        for update in updates:
            if update.sheet_name not in sheet_ids:
                sheet_id = await self.cache.resolve(self.spreadsheet_id, update.sheet_name)
                if sheet_id is None:
                    # Metadata lookup itself ran out of retries
                    logger.error(f"Could not resolve sheet '{update.sheet_name}'. Dropping {len(updates)} update(s)")
                    return None
                sheet_ids[update.sheet_name] = sheet_id

        body = self.batcher.build(updates, sheet_ids)
        result = await self.call_with_retry(lambda: self.sheets.batch_update(self.spreadsheet_id, body))
        if result is not None:
            logger.debug(f"Wrote {len(updates)} update(s) to {len(sheet_ids)} sheet(s)")
        return result
