import json
from typing import Annotated, Dict, List, Optional
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import Field, field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "OpTrack"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Market Data (Schwab)
    MARKET_DATA_BASE_URL: str = Field(default="https://api.schwabapi.com/marketdata/v1", description="Market data API root")
    HTTP_TIMEOUT: float = Field(default=10.0, description="Per-request timeout in seconds")

    # OAuth refresh-token grant
    CS_CLIENT_ID: str = Field(default="", description="OAuth client id")
    CS_CLIENT_SECRET: str = Field(default="", description="OAuth client secret")
    CS_TOKEN_URL: str = Field(default="https://api.schwabapi.com/v1/oauth/token", description="OAuth token endpoint")
    CS_REFRESH_TOKEN: str = Field(default="", description="Long lived refresh token")
    TOKEN_REFRESH_INTERVAL: float = Field(default=1800.0, description="Seconds between refreshes until the server reports expires_in")

    # Spreadsheet backend
    GOOGLE_SHEET_ID: str = Field(default="", description="Target spreadsheet document id")
    GOOGLE_ACCESS_TOKEN: str = Field(default="", description="Static bearer credential, used only without a service account")
    SHEETS_BASE_URL: str = Field(default="https://sheets.googleapis.com/v4/spreadsheets", description="Spreadsheet API root")

    # Service account for the spreadsheet API
    SERVICE_ACCOUNT_PROJECT_ID: str = ""
    SERVICE_ACCOUNT_PRIVATE_KEY_ID: str = ""
    SERVICE_ACCOUNT_PRIVATE_KEY: str = Field(default="", description="PEM key; literal \\n sequences are accepted")
    SERVICE_ACCOUNT_CLIENT_EMAIL: str = ""
    SERVICE_ACCOUNT_CLIENT_ID: str = ""
    SERVICE_ACCOUNT_TOKEN_URI: str = "https://oauth2.googleapis.com/token"

    # Tracking
    TRACKED_SYMBOLS: Annotated[List[str], NoDecode] = Field(default=["SPY"], description="Underlyings to track")
    TREASURY_SYMBOL: str = Field(default="$TNX", description="10 year treasury yield instrument")

    # Cadence
    POLL_INTERVAL: float = Field(default=10.0, description="Seconds between collector ticks")
    YIELD_START_DELAY: float = Field(default=2.5, description="Delay before the first yield tick")
    ALLOW_OVERLAPPING_TICKS: bool = Field(default=False, description="Let a collector tick start while the previous one is running")

    # Collectors
    PRICE_HISTORY_DAYS: int = 4
    OPTION_STRIKE_COUNT: int = 7
    OPTION_WINDOW_DAYS: int = 10
    MARKET_TIMEZONE: str = "America/New_York"
    DIVIDEND_YIELD: float = 0.0
    TREASURY_YIELD_DIVISOR: float = Field(default=1000.0, description="Quote lastPrice / divisor = annual rate")

    # Sheet writer
    SHEETS_MAX_RETRIES: int = 10
    SHEETS_RETRY_BASE_DELAY: float = 12.0
    SHEETS_RETRY_JITTER: float = 1.0

    @field_validator("TRACKED_SYMBOLS", mode="before")
    @classmethod
    def parse_symbols(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            # Handle comma-separated string: "SPY,GME"
            return [x.strip() for x in v.split(",") if x.strip()]
        return v

    @property
    def all_symbols(self) -> List[str]:
        """Tracked underlyings followed by the treasury instrument."""
        symbols = list(self.TRACKED_SYMBOLS)
        if self.TREASURY_SYMBOL and self.TREASURY_SYMBOL not in symbols:
            symbols.append(self.TREASURY_SYMBOL)
        return symbols

    @property
    def service_account_info(self) -> Optional[Dict[str, str]]:
        """Service-account key in the JSON key-file shape, or None when not configured."""
        if not (self.SERVICE_ACCOUNT_PRIVATE_KEY and self.SERVICE_ACCOUNT_CLIENT_EMAIL):
            return None
        return {
            "type": "service_account",
            "project_id": self.SERVICE_ACCOUNT_PROJECT_ID,
            "private_key_id": self.SERVICE_ACCOUNT_PRIVATE_KEY_ID,
            "private_key": self.SERVICE_ACCOUNT_PRIVATE_KEY.replace("\\n", "\n"),
            "client_email": self.SERVICE_ACCOUNT_CLIENT_EMAIL,
            "client_id": self.SERVICE_ACCOUNT_CLIENT_ID,
            "token_uri": self.SERVICE_ACCOUNT_TOKEN_URI,
        }

settings = Settings()
