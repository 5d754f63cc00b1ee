"""Component wiring: one ledger, one shared rate limiter, one gateway."""

import logging
from dataclasses import dataclass

from kokitzu.config import RateLimitConfig, Settings, get_settings
from kokitzu.services.chain import ChainGateway, create_web3
from kokitzu.services.oracle import PriceOracleClient, create_price_oracle
from kokitzu.services.rate_limit import RateLimiter
from kokitzu.settlement import PendingIdResolver, SettlementScanner
from kokitzu.storage import BetLedger

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    settings: Settings
    ledger: BetLedger
    limiter: RateLimiter
    gateway: ChainGateway
    oracle: PriceOracleClient
    scanner: SettlementScanner
    resolver: PendingIdResolver


def build_limiter(config: RateLimitConfig) -> RateLimiter:
    return RateLimiter(
        min_interval_seconds=config.min_interval_seconds,
        max_retries=config.max_retries,
        base_delay_seconds=config.base_delay_seconds,
    )


def build_ledger(settings: Settings | None = None) -> BetLedger:
    settings = settings or get_settings()
    if not settings.database_url:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return BetLedger.from_url(settings.ledger_url)


def build_engine(settings: Settings | None = None) -> Engine:
    """Build every component from settings.

    Raises:
        ValueError: If no RPC endpoint is configured
    """
    settings = settings or get_settings()
    if not settings.rpc_url:
        raise ValueError("RPC_URL is not set. Add it to .env")

    ledger = build_ledger(settings)
    limiter = build_limiter(settings.rate_limit)
    web3 = create_web3(settings.rpc_url, settings.chain)

    gateway = ChainGateway(
        web3,
        settings.contract_address,
        limiter,
        config=settings.chain,
        private_key=settings.private_key or None,
    )
    oracle = create_price_oracle(
        settings.oracle, limiter, web3=web3, api_key=settings.coingecko_api_key
    )
    if not settings.can_sign:
        logger.warning("PRIVATE_KEY not set - settlement submissions will fail")

    return Engine(
        settings=settings,
        ledger=ledger,
        limiter=limiter,
        gateway=gateway,
        oracle=oracle,
        scanner=SettlementScanner(ledger, gateway, settings.settlement),
        resolver=PendingIdResolver(ledger, gateway, settings.settlement),
    )
