"""Terminal bet states derived from on-chain truth."""

from datetime import datetime
from decimal import Decimal

from kokitzu.services.chain.models import OnChainOption
from kokitzu.storage.models import Bet, BetResult, BetStatus

ZERO = Decimal("0")


def derive_outcome(bet: Bet, option: OnChainOption, now: datetime) -> Bet:
    """Map an executed on-chain option onto the bet's terminal state.

    Equal entry and exit prices are a push: the stake is returned. Otherwise
    the contract's win flag decides, and a winner receives the on-chain payout.
    """
    if not option.executed:
        raise ValueError(f"Option {option.option_id} is not executed yet")

    if option.entry_price == option.exit_price:
        status, result, payout = BetStatus.EXPIRED, BetResult.DRAW, bet.stake
    elif option.is_win:
        if option.payout is None:
            raise ValueError(f"Option {option.option_id} won but carries no payout")
        status, result, payout = BetStatus.WON, BetResult.WIN, option.payout
    else:
        status, result, payout = BetStatus.LOST, BetResult.LOSS, ZERO

    return bet.model_copy(
        update={
            "status": status,
            "result": result,
            "exit_price": option.exit_price,
            "payout": payout,
            "settled_at": now,
        }
    )


def invalid_outcome(bet: Bet, now: datetime) -> Bet:
    """The bet's option id does not exist on-chain."""
    return _unpriced(bet, BetStatus.LOST, BetResult.INVALID, now)


def error_outcome(bet: Bet, now: datetime, settlement_tx_hash: str | None = None) -> Bet:
    """Settlement was attempted and rejected; needs manual follow-up."""
    return _unpriced(bet, BetStatus.LOST, BetResult.ERROR, now, settlement_tx_hash)


def failed_creation_outcome(bet: Bet, now: datetime) -> Bet:
    """The transaction that should have created the option reverted."""
    return _unpriced(bet, BetStatus.EXPIRED, BetResult.LOSS, now)


def _unpriced(
    bet: Bet,
    status: BetStatus,
    result: BetResult,
    now: datetime,
    settlement_tx_hash: str | None = None,
) -> Bet:
    update = {
        "status": status,
        "result": result,
        "exit_price": None,
        "payout": ZERO,
        "settled_at": now,
    }
    if settlement_tx_hash:
        update["settlement_tx_hash"] = settlement_tx_hash
    return bet.model_copy(update=update)
