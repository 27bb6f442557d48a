import json
import pytest
import httpx
from datetime import datetime, timezone
from urllib.parse import parse_qs
from unittest.mock import MagicMock, patch
from optrack.config import Settings
from optrack.connectors.google_auth import SPREADSHEETS_SCOPE, ServiceAccountTokenProvider, build_sheets_token_provider
from optrack.connectors.google_sheets import GoogleSheetsREST, SheetsRateLimitError
from optrack.connectors.schwab_auth import TokenRefresher, TokenStore
from optrack.connectors.schwab_rest import SchwabMarketDataREST
from optrack.core.models import ContractType

def mock_client(handler, base_url="https://api.test"):
    return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))

def option(strike, exp="2025-01-10T21:00:00.000+00:00", **overrides):
    payload = {
        "description": f"SPY 01/10/2025 {strike} C",
        "bid": 1.1, "ask": 1.2, "last": 1.15,
        "strikePrice": strike, "expirationDate": exp,
        "daysToExpiration": 3, "inTheMoney": False,
        "totalVolume": 1500, "volatility": 14.2,
    }
    payload.update(overrides)
    return payload

# --- Market data ---

@pytest.mark.asyncio
async def test_price_history_request_and_parse():
    seen = {}

    def handler(request: httpx.Request):
        seen["request"] = request
        return httpx.Response(200, json={"candles": [
            {"open": 1, "high": 2, "low": 1, "close": 1.5, "volume": 100, "datetime": 1735828200000},
        ]})

    tokens = TokenStore(access_token="abc")
    client = SchwabMarketDataREST(token_provider=tokens.get_access_token, client=mock_client(handler))
    candles = await client.get_price_history("SPY")

    request = seen["request"]
    assert request.url.path == "/pricehistory"
    assert request.headers["Authorization"] == "Bearer abc"
    params = request.url.params
    assert params["symbol"] == "SPY"
    assert params["periodType"] == "day"
    assert params["period"] == "4"
    assert params["frequencyType"] == "minute"
    assert params["frequency"] == "1"
    assert params["needExtendedHoursData"] == "true"
    assert int(params["endDate"]) > 0

    assert len(candles) == 1
    assert candles[0].close == 1.5
    assert candles[0].timestamp == datetime(2025, 1, 2, 14, 30, tzinfo=timezone.utc)

@pytest.mark.asyncio
async def test_token_is_read_per_request():
    headers = []

    def handler(request):
        headers.append(request.headers["Authorization"])
        return httpx.Response(200, json={"candles": []})

    tokens = TokenStore(access_token="first")
    client = SchwabMarketDataREST(token_provider=tokens.get_access_token, client=mock_client(handler))
    await client.get_price_history("SPY")
    tokens.access_token = "second"
    await client.get_price_history("SPY")

    assert headers == ["Bearer first", "Bearer second"]

@pytest.mark.asyncio
async def test_quote_encodes_symbol():
    seen = {}

    def handler(request):
        seen["path"] = request.url.raw_path.decode()
        return httpx.Response(200, json={"$TNX": {"symbol": "$TNX", "quote": {
            "bidPrice": 42.1, "lastPrice": 42.5, "closePrice": 42.0, "tradeTime": 1735828200000,
        }}})

    client = SchwabMarketDataREST(token_provider=lambda: "t", client=mock_client(handler))
    quote = await client.get_quote("$TNX")

    assert seen["path"].startswith("/%24TNX/quotes")
    assert "fields=quote" in seen["path"]
    assert quote.symbol == "$TNX"
    assert quote.last_price == 42.5
    assert quote.bid_price == 42.1

@pytest.mark.asyncio
async def test_quote_missing_symbol_raises():
    client = SchwabMarketDataREST(token_provider=lambda: "t", client=mock_client(lambda r: httpx.Response(200, json={})))
    with pytest.raises(KeyError):
        await client.get_quote("SPY")

@pytest.mark.asyncio
async def test_option_chain_flattens_selected_side():
    seen = {}

    def handler(request):
        seen["params"] = request.url.params
        return httpx.Response(200, json={
            "callExpDateMap": {
                "2025-01-10:3": {"590.0": [option(590.0)], "595.0": [option(595.0)]},
                "2025-01-13:6": {"590.0": [option(590.0, exp="2025-01-13T21:00:00.000+00:00")]},
            },
            "putExpDateMap": {"2025-01-10:3": {"580.0": [option(580.0)]}},
        })

    client = SchwabMarketDataREST(token_provider=lambda: "t", client=mock_client(handler))
    calls = await client.get_option_chain("SPY", ContractType.CALL)

    assert [c.strike for c in calls] == [590.0, 595.0, 590.0]
    assert calls[0].volume == 1500
    assert calls[0].implied_vol == 14.2
    params = seen["params"]
    assert params["contractType"] == "CALL"
    assert params["strikeCount"] == "7"
    from_date = datetime.strptime(params["fromDate"], "%Y-%m-%d")
    to_date = datetime.strptime(params["toDate"], "%Y-%m-%d")
    assert (to_date - from_date).days == 10

@pytest.mark.asyncio
async def test_market_data_http_error_propagates():
    client = SchwabMarketDataREST(token_provider=lambda: "t", client=mock_client(lambda r: httpx.Response(401, text="expired")))
    with pytest.raises(httpx.HTTPStatusError):
        await client.get_price_history("SPY")

# --- Spreadsheet backend ---

@pytest.mark.asyncio
async def test_sheet_ids_lookup():
    def handler(request):
        assert request.url.path == "/v4/spreadsheets/doc"
        assert request.headers["Authorization"] == "Bearer g-token"
        return httpx.Response(200, json={"sheets": [
            {"properties": {"sheetId": 0, "title": "SPY Last Bid"}},
            {"properties": {"sheetId": 77, "title": "SPY CALL"}},
        ]})

    sheets = GoogleSheetsREST(token_provider=lambda: "g-token",
                              client=mock_client(handler, base_url="https://sheets.test/v4/spreadsheets"))
    assert await sheets.get_sheet_ids("doc") == {"SPY Last Bid": 0, "SPY CALL": 77}

@pytest.mark.asyncio
async def test_batch_update_posts_body():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"replies": [{}]})

    sheets = GoogleSheetsREST(token_provider=lambda: "g",
                              client=mock_client(handler, base_url="https://sheets.test/v4/spreadsheets"))
    body = {"requests": [{"updateCells": {}}]}
    assert await sheets.batch_update("doc", body) == {"replies": [{}]}
    assert seen["method"] == "POST"
    assert seen["path"] == "/v4/spreadsheets/doc:batchUpdate"
    assert seen["body"] == body

@pytest.mark.asyncio
async def test_429_raises_rate_limit_error():
    sheets = GoogleSheetsREST(token_provider=lambda: "g",
                              client=mock_client(lambda r: httpx.Response(429), base_url="https://sheets.test"))
    with pytest.raises(SheetsRateLimitError):
        await sheets.batch_update("doc", {"requests": []})

@pytest.mark.asyncio
async def test_other_status_raises_http_error():
    sheets = GoogleSheetsREST(token_provider=lambda: "g",
                              client=mock_client(lambda r: httpx.Response(403, text="denied"), base_url="https://sheets.test"))
    with pytest.raises(httpx.HTTPStatusError):
        await sheets.batch_update("doc", {"requests": []})

# --- Token refresh ---

@pytest.mark.asyncio
async def test_refresh_updates_store():
    seen = {}

    def handler(request):
        seen["form"] = parse_qs(request.content.decode())
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"access_token": "new", "expires_in": 1800})

    store = TokenStore(access_token="old", refresh_token="r1")
    refresher = TokenRefresher(store, client=mock_client(handler))
    assert await refresher.refresh() is True

    assert store.access_token == "new"
    assert store.refresh_interval == 1500
    assert seen["form"] == {"grant_type": ["refresh_token"], "refresh_token": ["r1"]}
    assert seen["auth"].startswith("Basic ")

@pytest.mark.asyncio
async def test_refresh_without_refresh_token_is_noop():
    store = TokenStore()
    refresher = TokenRefresher(store, client=mock_client(lambda r: httpx.Response(500)))
    assert await refresher.refresh() is False
    assert store.access_token == ""

@pytest.mark.asyncio
async def test_failed_initial_refresh_keeps_running():
    store = TokenStore(access_token="old", refresh_token="r1", refresh_interval=60)
    refresher = TokenRefresher(store, client=mock_client(lambda r: httpx.Response(500)))

    await refresher.start()
    assert refresher.is_running
    assert store.access_token == "old"
    await refresher.stop()
    assert not refresher.is_running

# --- Spreadsheet credentials ---

class FakeCredentials:
    def __init__(self):
        self.token = None
        self.valid = False
        self.expiry = None
        self.refreshes = 0

    def refresh(self, request):
        self.refreshes += 1
        self.token = f"sa-{self.refreshes}"
        self.valid = True

@pytest.mark.asyncio
async def test_expired_service_account_token_refreshed_before_request():
    seen = []

    def handler(request):
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={"replies": []})

    credentials = FakeCredentials()
    provider = ServiceAccountTokenProvider(credentials, request_factory=MagicMock)
    sheets = GoogleSheetsREST(token_provider=provider.get_access_token,
                              client=mock_client(handler, base_url="https://sheets.test"))

    await sheets.batch_update("doc", {"requests": []})
    await sheets.batch_update("doc", {"requests": []})
    assert credentials.refreshes == 1

    # Token lifetime ran out between ticks
    credentials.valid = False
    await sheets.batch_update("doc", {"requests": []})

    assert seen == ["Bearer sa-1", "Bearer sa-1", "Bearer sa-2"]
    assert credentials.refreshes == 2

def test_service_account_info_from_settings():
    assert Settings(_env_file=None).service_account_info is None

    s = Settings(
        _env_file=None,
        SERVICE_ACCOUNT_PRIVATE_KEY="-----BEGIN-----\\nabc\\n-----END-----",
        SERVICE_ACCOUNT_CLIENT_EMAIL="tracker@example.iam.gserviceaccount.com",
        SERVICE_ACCOUNT_PROJECT_ID="options-tracking",
    )
    info = s.service_account_info
    assert info["type"] == "service_account"
    assert info["private_key"] == "-----BEGIN-----\nabc\n-----END-----"
    assert info["client_email"] == "tracker@example.iam.gserviceaccount.com"
    assert info["token_uri"] == "https://oauth2.googleapis.com/token"

def test_build_provider_prefers_service_account():
    info = {"client_email": "tracker@example.iam.gserviceaccount.com"}
    with patch("optrack.connectors.google_auth.settings") as mock_settings, \
         patch("optrack.connectors.google_auth.service_account.Credentials.from_service_account_info") as from_info:
        mock_settings.service_account_info = info
        mock_settings.GOOGLE_ACCESS_TOKEN = "static"
        provider = build_sheets_token_provider()

    from_info.assert_called_once_with(info, scopes=[SPREADSHEETS_SCOPE])
    assert provider.__self__.credentials is from_info.return_value

def test_build_provider_falls_back_to_static_token_or_none():
    with patch("optrack.connectors.google_auth.settings") as mock_settings:
        mock_settings.service_account_info = None
        mock_settings.GOOGLE_ACCESS_TOKEN = "static"
        assert build_sheets_token_provider()() == "static"

        mock_settings.GOOGLE_ACCESS_TOKEN = ""
        assert build_sheets_token_provider() is None
