"""Bet creation: capture the entry price and write the initial ACTIVE row."""

import logging
from datetime import datetime
from decimal import Decimal

from kokitzu.services.oracle import PriceOracleClient
from kokitzu.storage import Bet, BetLedger, Direction, HoldingPeriod
from kokitzu.storage.models import utcnow

logger = logging.getLogger(__name__)


def record_bet(
    ledger: BetLedger,
    oracle: PriceOracleClient,
    *,
    asset: str,
    direction: Direction | str,
    stake: Decimal | str | float,
    holding_period: HoldingPeriod | str,
    transaction_hash: str,
    wallet_address: str | None = None,
    option_id: str | int | None = None,
    block_number: int | None = None,
    entry_price: Decimal | None = None,
    now: datetime | None = None,
) -> Bet:
    """Record a bet placed on-chain.

    A repeat of an already recorded transaction returns the stored bet without
    touching the oracle. OracleUnavailable propagates: a bet is never created
    without an entry price.
    """
    existing = ledger.find_by_transaction_hash(transaction_hash)
    if existing is not None:
        logger.info(f"Transaction {transaction_hash} already recorded as bet {existing.id}")
        return existing

    if entry_price is None:
        entry_price = oracle.get_price(asset)
        logger.info(f"Captured entry price for {asset.upper()}: {entry_price}")

    bet = Bet(
        asset=asset,
        direction=Direction(str(getattr(direction, "value", direction)).upper()),
        stake=Decimal(str(stake)),
        holding_period=HoldingPeriod(str(getattr(holding_period, "value", holding_period)).upper()),
        entry_price=entry_price,
        transaction_hash=transaction_hash,
        option_id=str(option_id) if option_id is not None else None,
        block_number=block_number,
        wallet_address=wallet_address,
        created_at=now or utcnow(),
    )
    return ledger.create(bet)
