"""Pending-Identifier Resolver: fills in option ids once creation transactions confirm."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from kokitzu.config import SettlementConfig
from kokitzu.services.chain import ChainGateway
from kokitzu.storage import Bet, BetLedger
from kokitzu.storage.models import utcnow

from .models import ResolveResult
from .outcome import failed_creation_outcome
from .scanner import SYSTEMIC_ERRORS

logger = logging.getLogger(__name__)


class PendingIdResolver:
    def __init__(
        self,
        ledger: BetLedger,
        gateway: ChainGateway,
        config: SettlementConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.config = config or SettlementConfig()
        self._clock = clock

    def run_tick(self, now: datetime | None = None) -> ResolveResult:
        now = now or self._clock()
        result = ResolveResult()

        bets = self.ledger.find_active_without_option_id(limit=self.config.max_bets_per_tick)
        if not bets:
            logger.debug("Resolver: no bets awaiting an option id")
            return result

        for bet in bets:
            result.inspected += 1
            try:
                self.resolve_bet(bet, result, now)
            except SYSTEMIC_ERRORS as exc:
                result.aborted = True
                result.abort_reason = f"{type(exc).__name__}: {exc}"
                logger.error("Resolver tick aborted at bet %s: %s", bet.id, exc)
                break
            except Exception as exc:
                result.failures += 1
                logger.error(
                    "Resolver failed on bet %s (tx %s): %s",
                    bet.id,
                    bet.transaction_hash,
                    exc,
                    exc_info=True,
                )

        logger.info(
            "Resolver tick: inspected=%d resolved=%d pending=%d stale=%d "
            "failed_tx=%d anomalies=%d failures=%d%s",
            result.inspected,
            result.resolved,
            result.pending,
            result.stale,
            result.failed_tx,
            result.anomalies,
            result.failures,
            " (aborted)" if result.aborted else "",
        )
        return result

    def resolve_bet(self, bet: Bet, result: ResolveResult, now: datetime) -> Bet | None:
        receipt = self.gateway.get_transaction_receipt(bet.transaction_hash)

        if receipt.is_pending:
            result.pending += 1
            age = now - bet.created_at
            if age > timedelta(minutes=self.config.stale_pending_minutes):
                result.stale += 1
                logger.warning(
                    "Bet %s: creation tx %s unconfirmed for %d min. "
                    "If it was dropped, run 'python -m kokitzu expire --bet-id %s'",
                    bet.id,
                    bet.transaction_hash,
                    age.total_seconds() // 60,
                    bet.id,
                )
            return None

        if receipt.failed:
            logger.warning(
                "Bet %s: creation tx %s reverted; expiring with no payout",
                bet.id,
                bet.transaction_hash,
            )
            saved = self.ledger.save(failed_creation_outcome(bet, now))
            result.failed_tx += 1
            return saved

        option_id = self.gateway.extract_option_id(receipt)
        if option_id is None:
            result.anomalies += 1
            logger.error(
                "DATA INTEGRITY: bet %s creation tx %s succeeded but emitted no OptionCreated event",
                bet.id,
                bet.transaction_hash,
            )
            return None

        saved = self.ledger.save(
            bet.model_copy(update={"option_id": option_id, "block_number": receipt.block_number})
        )
        result.resolved += 1
        logger.info(
            "Bet %s resolved to option %s (block %s)", bet.id, option_id, receipt.block_number
        )
        return saved


def resolver_job(resolver: PendingIdResolver) -> None:
    """Scheduler job wrapper for the pending-identifier resolver."""
    try:
        result = resolver.run_tick()
        if result.aborted:
            logger.warning("Resolver: tick aborted: %s", result.abort_reason)
    except Exception as exc:
        logger.error("Resolver run failed: %s", exc, exc_info=True)
