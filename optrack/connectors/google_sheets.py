import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Union
import httpx
from optrack.config import settings
from optrack.core.logger import logger

class SheetsRateLimitError(Exception):
    """The spreadsheet API answered 429 Too Many Requests"""
    def __init__(self, response: httpx.Response):
        super().__init__(f"Rate limited by spreadsheet API: {response.status_code} {response.reason_phrase}")
        self.response = response

class GoogleSheetsREST:
    """
    Minimal Sheets v4 client: sheet id lookup and batched cell writes.
    Credentials are supplied by token_provider and read on every request;
    the provider may be a coroutine function that refreshes before returning.
    """
    def __init__(self, token_provider: Optional[Callable[[], Union[str, Awaitable[str]]]] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.SHEETS_BASE_URL
        self.token_provider = token_provider or (lambda: settings.GOOGLE_ACCESS_TOKEN)
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=settings.HTTP_TIMEOUT)

    async def _request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None, json: Optional[Dict[str, Any]] = None):
        token = self.token_provider()
        if inspect.isawaitable(token):
            token = await token
        headers = {"Authorization": f"Bearer {token}"}

        response = await self.client.request(method, endpoint, params=params, json=json, headers=headers)

        if response.status_code == 429:
            logger.info(f"Spreadsheet API rate limit hit on {method} {endpoint}")
            raise SheetsRateLimitError(response)

        if response.status_code >= 400:
            logger.error(f"Spreadsheet API Error {response.status_code}: {response.text}")

        response.raise_for_status()
        return response.json()

    async def get_sheet_ids(self, spreadsheet_id: str) -> Dict[str, int]:
        """Map sheet title -> numeric sheetId for every sheet in the document"""
        data = await self._request(
            "GET",
            f"/{spreadsheet_id}",
            params={"fields": "sheets.properties(sheetId,title)"},
        )
        return {
            sheet["properties"]["title"]: sheet["properties"]["sheetId"]
            for sheet in data.get("sheets", [])
        }

    async def batch_update(self, spreadsheet_id: str, body: Dict[str, Any]):
        """Apply a batchUpdate request body atomically"""
        return await self._request("POST", f"/{spreadsheet_id}:batchUpdate", json=body)

    async def close(self):
        await self.client.aclose()
