"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from kokitzu import __version__
from kokitzu.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> None:
    """
    Initialize Logfire with instrumentation.

    Must be called ONCE at application startup, before the scheduler starts.

    This function configures Logfire cloud tracking and instruments:
    - HTTPX clients (CoinGecko price lookups)
    - SQLAlchemy engines (bet ledger)
    - Python logging (bridges to Logfire)

    Args:
        settings: Application settings containing Logfire token
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="kokitzu-settlement",
            service_version=__version__,
            environment=f"chain-{settings.chain.chain_id}",
        )

        logfire.instrument_httpx()
        logfire.instrument_sqlalchemy()

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        try:
            logfire.instrument_system_metrics()
        except Exception as metrics_error:
            logger.debug(f"System metrics instrumentation skipped: {metrics_error}")

        logger.info("✓ Logfire cloud tracking initialized")

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
