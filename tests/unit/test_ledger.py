"""Unit tests for the bet ledger and its invariants."""

from datetime import timedelta, timezone
from decimal import Decimal

import pytest

import kokitzu.storage.ledger as ledger_module
from kokitzu.storage import (
    Bet,
    BetNotFound,
    BetResult,
    BetStatus,
    Direction,
    HoldingPeriod,
    LedgerInvariantViolation,
)


def test_create_sets_expiry_and_quantizes(ledger, now) -> None:
    bet = ledger.create(
        Bet(
            asset="eth",
            direction=Direction.DOWN,
            stake=Decimal("0.123456789"),
            holding_period=HoldingPeriod.FIFTEEN_MINUTES,
            entry_price=Decimal("3012.5"),
            transaction_hash="0x01",
            created_at=now,
        )
    )

    assert bet.id.startswith("bet-")
    assert bet.asset == "ETH"
    assert bet.status == BetStatus.ACTIVE
    assert bet.result is None
    assert bet.stake == Decimal("0.12345679")
    assert bet.expires_at == now + timedelta(minutes=15)
    assert bet.created_at.tzinfo is not None

    stored = ledger.get(bet.id)
    assert stored.created_at == now
    assert stored.created_at.utcoffset() == timezone.utc.utcoffset(None)
    assert stored.entry_price == Decimal("3012.5")


def test_create_deduplicates_on_transaction_hash(ledger, make_bet) -> None:
    first = make_bet(transaction_hash="0xsame", stake="0.1")
    second = make_bet(transaction_hash="0xsame", stake="0.7")

    assert second.id == first.id
    assert second.stake == Decimal("0.1")
    assert len(ledger.list_bets()) == 1


def test_create_rejects_terminal_or_inconsistent_rows(ledger, now) -> None:
    with pytest.raises(LedgerInvariantViolation):
        ledger.create(
            Bet(
                asset="ETH",
                direction=Direction.UP,
                stake=Decimal("1"),
                holding_period=HoldingPeriod.ONE_MINUTE,
                entry_price=Decimal("3000"),
                transaction_hash="0x02",
                status=BetStatus.WON,
                result=BetResult.WIN,
                exit_price=Decimal("3100"),
                payout=Decimal("1.8"),
            )
        )

    with pytest.raises(LedgerInvariantViolation):
        ledger.create(
            Bet(
                asset="ETH",
                direction=Direction.UP,
                stake=Decimal("1"),
                holding_period=HoldingPeriod.ONE_MINUTE,
                entry_price=Decimal("3000"),
                transaction_hash="0x03",
                created_at=now,
                expires_at=now + timedelta(minutes=2),
            )
        )


def test_get_unknown_bet(ledger) -> None:
    with pytest.raises(BetNotFound):
        ledger.get("bet-missing")


def test_entry_price_is_immutable(ledger, make_bet) -> None:
    bet = make_bet()
    with pytest.raises(LedgerInvariantViolation):
        ledger.save(bet.model_copy(update={"entry_price": Decimal("2999")}))
    assert ledger.get(bet.id).entry_price == Decimal("3000")


def test_option_id_is_set_once(ledger, make_bet) -> None:
    bet = make_bet(option_id=None)
    saved = ledger.save(bet.model_copy(update={"option_id": "42", "block_number": 9}))
    assert saved.option_id == "42"
    assert saved.block_number == 9

    with pytest.raises(LedgerInvariantViolation):
        ledger.save(saved.model_copy(update={"option_id": "43"}))


def test_terminal_transition_and_idempotent_repeat(ledger, make_bet, now) -> None:
    bet = make_bet()
    won = bet.model_copy(
        update={
            "status": BetStatus.WON,
            "result": BetResult.WIN,
            "exit_price": Decimal("3100"),
            "payout": Decimal("0.18"),
        }
    )

    saved = ledger.save(won)
    assert saved.status == BetStatus.WON
    assert saved.settled_at is not None

    again = ledger.save(won)
    assert again.status == BetStatus.WON
    assert again.payout == Decimal("0.18")

    with pytest.raises(LedgerInvariantViolation):
        ledger.save(won.model_copy(update={"status": BetStatus.LOST, "result": BetResult.LOSS, "payout": Decimal("0")}))

    with pytest.raises(LedgerInvariantViolation):
        ledger.save(won.model_copy(update={"status": BetStatus.ACTIVE, "result": None, "exit_price": None, "payout": None}))


@pytest.mark.parametrize(
    "update",
    [
        {"status": BetStatus.WON, "result": BetResult.LOSS, "exit_price": Decimal("1"), "payout": Decimal("0")},
        {"status": BetStatus.LOST, "result": BetResult.DRAW, "exit_price": Decimal("1"), "payout": Decimal("0")},
        {"status": BetStatus.WON, "result": BetResult.WIN, "exit_price": Decimal("1"), "payout": None},
        {"status": BetStatus.WON, "result": BetResult.WIN, "exit_price": None, "payout": Decimal("1")},
        {"status": BetStatus.ACTIVE, "result": None, "exit_price": None, "payout": Decimal("1")},
        {"status": BetStatus.ACTIVE, "result": BetResult.WIN, "exit_price": None, "payout": None},
    ],
)
def test_inconsistent_writes_are_rejected(ledger, make_bet, update) -> None:
    bet = make_bet()
    with pytest.raises(LedgerInvariantViolation):
        ledger.save(bet.model_copy(update=update))
    assert ledger.get(bet.id).status == BetStatus.ACTIVE


def test_unpriced_terminal_outcomes_are_allowed(ledger, make_bet) -> None:
    invalid = make_bet()
    saved = ledger.save(
        invalid.model_copy(
            update={"status": BetStatus.LOST, "result": BetResult.INVALID, "payout": Decimal("0")}
        )
    )
    assert saved.exit_price is None

    failed = make_bet(option_id=None)
    saved = ledger.save(
        failed.model_copy(
            update={"status": BetStatus.EXPIRED, "result": BetResult.LOSS, "payout": Decimal("0")}
        )
    )
    assert (saved.status, saved.result) == (BetStatus.EXPIRED, BetResult.LOSS)


def test_find_active_and_expired_orders_by_expiry(ledger, make_bet, now) -> None:
    later = make_bet(created_at=now - timedelta(minutes=6))
    earlier = make_bet(created_at=now - timedelta(minutes=20))
    make_bet(created_at=now - timedelta(minutes=2))  # not expired yet
    settled = make_bet(created_at=now - timedelta(minutes=30))
    ledger.save(
        settled.model_copy(
            update={"status": BetStatus.LOST, "result": BetResult.INVALID, "payout": Decimal("0")}
        )
    )

    found = ledger.find_active_and_expired(now)

    assert [b.id for b in found] == [earlier.id, later.id]


def test_find_active_without_option_id(ledger, make_bet, now) -> None:
    make_bet(option_id="5")
    second = make_bet(option_id=None, created_at=now - timedelta(minutes=1))
    first = make_bet(option_id=None, created_at=now - timedelta(minutes=9))

    found = ledger.find_active_without_option_id()

    assert [b.id for b in found] == [first.id, second.id]


def test_lookup_and_counts(ledger, make_bet) -> None:
    bet = make_bet(transaction_hash="0xfeed")
    make_bet()
    ledger.save(
        bet.model_copy(
            update={
                "status": BetStatus.EXPIRED,
                "result": BetResult.DRAW,
                "exit_price": Decimal("3000"),
                "payout": bet.stake,
            }
        )
    )

    assert ledger.find_by_transaction_hash("0xfeed").id == bet.id
    assert ledger.find_by_transaction_hash("0xnope") is None

    counts = ledger.count_by_status()
    assert counts[BetStatus.ACTIVE] == 1
    assert counts[BetStatus.EXPIRED] == 1
    assert counts[BetStatus.WON] == 0

    assert [b.id for b in ledger.list_bets(status=BetStatus.EXPIRED)] == [bet.id]


def test_save_does_not_insert_unknown_bets(ledger, now) -> None:
    bet = Bet(
        asset="ETH",
        direction=Direction.UP,
        stake=Decimal("0.1"),
        holding_period=HoldingPeriod.ONE_MINUTE,
        entry_price=Decimal("3000"),
        transaction_hash="0x99",
        created_at=now,
    )

    with pytest.raises(BetNotFound):
        ledger.save(bet)
    assert ledger.find_by_transaction_hash("0x99") is None


def test_save_rechecks_when_row_changes_underneath(ledger, make_bet, now, monkeypatch) -> None:
    bet = make_bet(option_id=None)
    expired = bet.model_copy(
        update={"status": BetStatus.EXPIRED, "result": BetResult.LOSS, "payout": Decimal("0")}
    )
    check_transition = ledger_module.check_transition
    interleaved = []

    # An operator expire commits between the option-id save's check and its write
    def check_then_interleave(stored, incoming):
        approved = check_transition(stored, incoming)
        if not interleaved and incoming.option_id == "42":
            interleaved.append(True)
            ledger.save(expired)
        return approved

    monkeypatch.setattr(ledger_module, "check_transition", check_then_interleave)

    with pytest.raises(LedgerInvariantViolation):
        ledger.save(bet.model_copy(update={"option_id": "42", "block_number": 7}))

    stored = ledger.get(bet.id)
    assert (stored.status, stored.result) == (BetStatus.EXPIRED, BetResult.LOSS)
    assert stored.option_id is None
    assert stored.block_number is None
