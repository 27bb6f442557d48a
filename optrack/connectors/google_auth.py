import asyncio
from typing import Any, Callable, Dict, Optional
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from optrack.config import settings
from optrack.core.logger import logger

SPREADSHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

class ServiceAccountTokenProvider:
    """
    Bearer tokens for the spreadsheet API minted from service-account
    credentials. A missing or expired token is refreshed before it is handed out.
    """
    def __init__(self, credentials, request_factory: Callable[[], Any] = Request):
        self.credentials = credentials
        self.request_factory = request_factory
        self._lock = asyncio.Lock()

    @classmethod
    def from_info(cls, info: Dict[str, Any]) -> "ServiceAccountTokenProvider":
        credentials = service_account.Credentials.from_service_account_info(info, scopes=[SPREADSHEETS_SCOPE])
        return cls(credentials)

    def _refresh(self):
        self.credentials.refresh(self.request_factory())

    async def get_access_token(self) -> str:
        if not self.credentials.valid:
            async with self._lock:
                if not self.credentials.valid:
                    # google-auth refreshes over a blocking transport
                    await asyncio.to_thread(self._refresh)
                    logger.info(f"Spreadsheet credentials refreshed. Expiry {self.credentials.expiry}")
        return self.credentials.token

def build_sheets_token_provider() -> Optional[Callable]:
    """Service account when configured, else the static token, else None."""
    info = settings.service_account_info
    if info:
        return ServiceAccountTokenProvider.from_info(info).get_access_token
    if settings.GOOGLE_ACCESS_TOKEN:
        return lambda: settings.GOOGLE_ACCESS_TOKEN
    return None
