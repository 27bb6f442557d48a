import asyncio
import signal
from contextlib import asynccontextmanager
from fastapi import FastAPI
from optrack.core.logger import logger
from optrack.config import settings
from optrack.connectors.schwab_auth import TokenRefresher, token_store
from optrack.connectors.schwab_rest import SchwabMarketDataREST
from optrack.connectors.google_auth import build_sheets_token_provider
from optrack.connectors.google_sheets import GoogleSheetsREST
from optrack.core.models import ContractType
from optrack.core.params import ParameterStore
from optrack.core.scheduler import CollectorScheduler
from optrack.core.sheet_sync import SheetSyncWriter

# Collectors
from optrack.collectors.price_history import PriceHistoryCollector
from optrack.collectors.quotes import QuoteCollector
from optrack.collectors.option_chain import OptionChainCollector
from optrack.collectors.treasury_yield import YieldCollector

def build_scheduler(market_data, store: ParameterStore, writer: SheetSyncWriter) -> CollectorScheduler:
    """Wire every collector to its own periodic task"""
    scheduler = CollectorScheduler()
    symbols = settings.TRACKED_SYMBOLS

    # Price history also covers the treasury instrument
    scheduler.add(PriceHistoryCollector(settings.all_symbols, market_data, store, writer))
    scheduler.add(QuoteCollector(symbols, market_data, store, writer))
    for contract_type in ContractType:
        scheduler.add(OptionChainCollector(symbols, market_data, store, writer, contract_type=contract_type))
    scheduler.add(
        YieldCollector(symbols, market_data, store, writer),
        start_delay=settings.YIELD_START_DELAY,
    )
    return scheduler

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"{settings.APP_NAME} Initializing", extra={"version": settings.APP_VERSION, "symbols": settings.TRACKED_SYMBOLS})

    # 1. Credentials
    refresher = TokenRefresher(token_store)
    await refresher.start()

    # 2. Clients and shared state
    market_data = SchwabMarketDataREST(token_provider=token_store.get_access_token)
    sheets_token = build_sheets_token_provider()
    sheets = GoogleSheetsREST(token_provider=sheets_token)
    writer = SheetSyncWriter(sheets)
    store = ParameterStore(settings.all_symbols)
    app.state.parameter_store = store

    # 3. Collectors
    # Every request reads the token at call time, so a late first refresh is picked up
    scheduler = None
    if not settings.GOOGLE_SHEET_ID:
        logger.warning("GOOGLE_SHEET_ID not set. Collectors not started.")
    elif sheets_token is None:
        logger.warning("No spreadsheet credentials configured. Collectors not started.")
    else:
        if not token_store.access_token:
            logger.warning("No market data access token yet. Collectors start anyway and pick it up once refreshed.")
        scheduler = build_scheduler(market_data, store, writer)
        scheduler.start()
        logger.info(f"Tracking {settings.TRACKED_SYMBOLS} every {settings.POLL_INTERVAL}s")

    yield

    # Shutdown
    logger.info("Shutdown Initiated...")
    if scheduler:
        await scheduler.stop()
    await refresher.stop()
    await market_data.close()
    await sheets.close()
    logger.info(f"{settings.APP_NAME} Shutdown Complete")

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

async def main():
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    stop_event = asyncio.Event()

    def handle_signal():
        stop_event.set()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, handle_signal)
    loop.add_signal_handler(signal.SIGTERM, handle_signal)

    async with lifespan(app):
        logger.info(f"{settings.APP_NAME} Pipeline Running")
        await stop_event.wait()
        logger.info("Shutdown signal received")

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
