"""Settlement Scanner: settles expired bets on-chain and reconciles the ledger.

Every decision reads on-chain state immediately before acting on it, so a
crashed or repeated tick re-derives the same terminal state and never submits
an execution for an option that is already executed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from kokitzu.config import SettlementConfig
from kokitzu.services.chain import (
    AlreadySettled,
    ChainGateway,
    ChainUnavailable,
    OptionNotExpired,
    OptionNotFound,
    SignerNotConfigured,
    SubmissionFailed,
    TransactionPending,
)
from kokitzu.services.rate_limit import RateLimited
from kokitzu.storage import Bet, BetLedger, BetStatus
from kokitzu.storage.models import utcnow

from .models import ScanResult
from .outcome import derive_outcome, error_outcome, invalid_outcome

logger = logging.getLogger(__name__)

# Failures that say nothing about the bet itself; the rest of the tick would fail too
SYSTEMIC_ERRORS = (RateLimited, ChainUnavailable, SignerNotConfigured)


class SettlementScanner:
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

    def run_tick(self, now: datetime | None = None) -> ScanResult:
        """Settle every ACTIVE bet whose holding period has elapsed."""
        now = now or self._clock()
        result = ScanResult()

        bets = self.ledger.find_active_and_expired(now, limit=self.config.max_bets_per_tick)
        if not bets:
            logger.debug("Scanner: no expired active bets")
            return result

        logger.info("Scanner: %d expired bets to settle", len(bets))

        for bet in bets:
            result.inspected += 1
            try:
                self.settle_bet(bet, result, now)
            except SYSTEMIC_ERRORS as exc:
                result.aborted = True
                result.abort_reason = f"{type(exc).__name__}: {exc}"
                logger.error(
                    "Scanner tick aborted at bet %s (option %s): %s",
                    bet.id,
                    bet.option_id,
                    exc,
                )
                break
            except Exception as exc:
                result.failures += 1
                logger.error(
                    "Scanner failed on bet %s (option %s, tx %s): %s",
                    bet.id,
                    bet.option_id,
                    bet.transaction_hash,
                    exc,
                    exc_info=True,
                )

        logger.info(
            "Scanner tick: inspected=%d settled=%d won=%d lost=%d draws=%d "
            "invalid=%d errors=%d skipped=%d pending=%d failures=%d%s",
            result.inspected,
            result.settled,
            result.won,
            result.lost,
            result.draws,
            result.invalid,
            result.errors_marked,
            result.skipped_no_option_id,
            result.pending,
            result.failures,
            " (aborted)" if result.aborted else "",
        )
        return result

    def settle_bet(self, bet: Bet, result: ScanResult, now: datetime) -> Bet | None:
        """Drive one expired bet to its terminal state.

        Returns the saved bet, or None when it stays ACTIVE this tick.
        """
        if bet.option_id is None:
            result.skipped_no_option_id += 1
            logger.debug("Bet %s has no option id yet, skipping", bet.id)
            return None

        try:
            option = self.gateway.read_option(bet.option_id)
        except OptionNotFound:
            logger.warning(
                "Bet %s references option %s which does not exist on-chain; marking INVALID",
                bet.id,
                bet.option_id,
            )
            saved = self.ledger.save(invalid_outcome(bet, now))
            result.invalid += 1
            result.settled += 1
            return saved

        settlement_tx_hash = None
        if not option.executed:
            if option.expiry is not None and option.expiry > now:
                result.pending += 1
                logger.info(
                    "Option %s for bet %s expires on-chain at %s; waiting",
                    bet.option_id,
                    bet.id,
                    option.expiry.isoformat(),
                )
                return None

            execution = None
            try:
                receipt = self.gateway.submit_settlement(bet.option_id)
                settlement_tx_hash = receipt.tx_hash
                execution = receipt.execution
            except AlreadySettled:
                logger.info("Option %s was executed by another party", bet.option_id)
            except OptionNotExpired:
                result.pending += 1
                logger.info(
                    "Contract reports option %s not expired yet; will retry next tick",
                    bet.option_id,
                )
                return None
            except TransactionPending as exc:
                result.pending += 1
                logger.warning(
                    "Execution of option %s for bet %s still pending (tx %s); will re-check next tick",
                    bet.option_id,
                    bet.id,
                    exc.tx_hash,
                )
                return None
            except (OptionNotFound, SubmissionFailed) as exc:
                logger.error(
                    "MANUAL FOLLOW-UP: settlement of bet %s failed "
                    "(option %s, creation tx %s, settlement tx %s): %s",
                    bet.id,
                    bet.option_id,
                    bet.transaction_hash,
                    exc.tx_hash,
                    exc,
                )
                saved = self.ledger.save(error_outcome(bet, now, exc.tx_hash))
                result.errors_marked += 1
                result.settled += 1
                return saved

            if execution is not None:
                option = option.model_copy(
                    update={
                        "executed": True,
                        "exit_price": execution.final_price,
                        "is_win": execution.won,
                        "payout": execution.payout,
                    }
                )
            else:
                option = self.gateway.read_option(bet.option_id)
                if not option.executed:
                    result.pending += 1
                    logger.warning(
                        "Option %s not yet reported executed after settlement; will re-check next tick",
                        bet.option_id,
                    )
                    return None

        outcome = derive_outcome(bet, option, now)
        if settlement_tx_hash:
            outcome = outcome.model_copy(update={"settlement_tx_hash": settlement_tx_hash})

        saved = self.ledger.save(outcome)
        result.settled += 1
        if saved.status == BetStatus.WON:
            result.won += 1
        elif saved.status == BetStatus.EXPIRED:
            result.draws += 1
        else:
            result.lost += 1

        logger.info(
            "Bet %s settled %s/%s: entry=%s exit=%s payout=%s",
            saved.id,
            saved.status.value,
            saved.result.value,
            saved.entry_price,
            saved.exit_price,
            saved.payout,
        )
        return saved


def settlement_job(scanner: SettlementScanner) -> None:
    """Scheduler job wrapper for the settlement scanner."""
    try:
        result = scanner.run_tick()
        if result.aborted:
            logger.warning("Scanner: tick aborted: %s", result.abort_reason)
    except Exception as exc:
        logger.error("Scanner run failed: %s", exc, exc_info=True)
