import asyncio
from typing import Optional
import httpx
from optrack.config import settings
from optrack.core.logger import logger

# Refresh this long before the server-side expiry
EXPIRY_MARGIN = 300.0

class TokenStore:
    """Holds the current bearer token. Replaced wholesale by the refresher, read by everyone else."""
    def __init__(self, access_token: str = "", refresh_token: str = "", refresh_interval: float = 1800.0):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.refresh_interval = refresh_interval

    def get_access_token(self) -> str:
        return self.access_token

class TokenRefresher:
    """Runs the OAuth refresh-token grant once at startup and then on a fixed cadence"""
    def __init__(self, store: TokenStore, client: Optional[httpx.AsyncClient] = None):
        self.store = store
        self.token_url = settings.CS_TOKEN_URL
        self.client_id = settings.CS_CLIENT_ID
        self.client_secret = settings.CS_CLIENT_SECRET
        self.client = client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> bool:
        """Exchange the refresh token for a new access token. Returns False if no refresh token is configured."""
        if not self.store.refresh_token:
            logger.warning("No refresh token configured. Access token not refreshed.")
            return False

        response = await self.client.post(
            self.token_url,
            data={"grant_type": "refresh_token", "refresh_token": self.store.refresh_token},
            auth=(self.client_id, self.client_secret),
        )
        if response.status_code >= 400:
            logger.error(f"Token refresh failed {response.status_code}: {response.text}")
        response.raise_for_status()

        payload = response.json()
        self.store.access_token = payload["access_token"]
        if payload.get("refresh_token"):
            self.store.refresh_token = payload["refresh_token"]
        if payload.get("expires_in"):
            self.store.refresh_interval = max(float(payload["expires_in"]) - EXPIRY_MARGIN, 1.0)

        logger.info(f"Access token refreshed. Next refresh in {self.store.refresh_interval:.0f}s")
        return True

    async def start(self):
        if self.is_running:
            return
        try:
            await self.refresh()
        except Exception as e:
            logger.error(f"Initial token refresh failed: {e}", exc_info=True)
        self.is_running = True
        self._task = asyncio.create_task(self._refresh_loop())

    async def _refresh_loop(self):
        while self.is_running:
            await asyncio.sleep(self.store.refresh_interval)
            try:
                await self.refresh()
            except Exception as e:
                # Keep the old token; readers use it until it expires
                logger.error(f"Token refresh error: {e}")

    async def stop(self):
        self.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self.client.aclose()

token_store = TokenStore(
    refresh_token=settings.CS_REFRESH_TOKEN,
    refresh_interval=settings.TOKEN_REFRESH_INTERVAL,
)
