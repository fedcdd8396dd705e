"""Entry point for the fee settlement service.

Wires all components together and serves the API with uvicorn. Settlement
background work (submissions, scheduled retries) shares the server's asyncio
event loop; FastAPI's lifespan resumes leftover work on startup and cancels
it on shutdown.

Component wiring order (in build_components):
1. AppSettings (configuration)
2. Logging setup
3. Repository (SQLite or in-memory)
4. FeePolicyEngine (tier and rate selection)
5. LedgerClient (paper ledger)
6. RetryQueue and LoggingReconciler
7. SettlementCoordinator
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from feesettle.config import AppSettings
from feesettle.data.database import FeeDatabase
from feesettle.data.memory import InMemoryFeeTransactionRepository
from feesettle.data.repository import FeeTransactionRepository
from feesettle.data.store import SqliteFeeTransactionRepository
from feesettle.ledger.paper_ledger import PaperLedger
from feesettle.logging import get_logger, setup_logging
from feesettle.policy.engine import FeePolicyEngine
from feesettle.settlement.coordinator import SettlementCoordinator
from feesettle.settlement.reconciliation import LoggingReconciler
from feesettle.settlement.retry_queue import RetryQueue


async def build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Connects the SQLite database when that backend is selected.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("feesettle.main")

    repository: FeeTransactionRepository
    if settings.database.backend == "sqlite":
        database = FeeDatabase(settings.database.path)
        await database.connect()
        repository = SqliteFeeTransactionRepository(database)
    else:
        logger.warning("memory_backend_selected", note="Fee transactions are not persisted.")
        repository = InMemoryFeeTransactionRepository()

    if not settings.fees.tier_rates:
        logger.warning(
            "no_fee_rates_configured",
            note="Set FEES_TIER_RATES; quotes and settlements will fail until then.",
        )

    policy = FeePolicyEngine(settings.fees)
    ledger = PaperLedger()
    retry_queue = RetryQueue()
    reconciler = LoggingReconciler()

    coordinator = SettlementCoordinator(
        policy=policy,
        repository=repository,
        ledger=ledger,
        settings=settings.settlement,
        retry_queue=retry_queue,
        reconciler=reconciler,
        platform_wallet_address=settings.ledger.platform_wallet_address,
        fallback_on_unknown_promotion=settings.fees.fallback_on_unknown_promotion,
    )

    return {
        "repository": repository,
        "policy": policy,
        "ledger": ledger,
        "retry_queue": retry_queue,
        "reconciler": reconciler,
        "coordinator": coordinator,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Resume leftover settlement work on startup; stop it cleanly on shutdown."""
    logger = get_logger("feesettle.main")
    components = app.state.components

    await components["coordinator"].resume()
    logger.info("lifespan_started", network=app.state.settings.ledger.network)

    yield

    await components["coordinator"].close()
    await components["ledger"].close()
    await components["repository"].close()
    logger.info("fee_settlement_stopped")


async def run() -> None:
    """Run the fee settlement API server."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    log_format = settings.log_format or (
        "json" if settings.environment == "production" else "console"
    )
    setup_logging(settings.log_level, log_format)
    logger = get_logger("feesettle.main")

    # 3-7. Build all components
    components = await build_components(settings)

    from feesettle.api.app import create_app

    app = create_app(components["coordinator"], settings, lifespan=lifespan)
    app.state.components = components

    logger.info(
        "starting_fee_settlement",
        host=settings.api.host,
        port=settings.api.port,
        base_path=settings.api.base_path,
        environment=settings.environment,
    )

    config = uvicorn.Config(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
