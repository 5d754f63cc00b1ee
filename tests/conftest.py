"""Shared fixtures: temporary SQLite ledger, in-memory contract and a fake clock."""

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from kokitzu.services.chain import (
    AlreadySettled,
    OnChainOption,
    OptionNotFound,
    SettlementReceipt,
    TransactionReceipt,
)
from kokitzu.services.chain.abi import ZERO_ADDRESS
from kokitzu.services.chain.models import ExecutionEvent, ReceiptStatus
from kokitzu.storage import Bet, BetLedger, Direction, HoldingPeriod

TRADER = "0x00000000000000000000000000000000000000aa"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeGateway:
    """Thread-safe in-memory stand-in for the BinaryOptions contract."""

    def __init__(self):
        self._lock = threading.Lock()
        self.options: dict[int, OnChainOption] = {}
        self.exit_prices: dict[int, Decimal] = {}
        self.receipts: dict[str, TransactionReceipt] = {}
        self.submit_errors: dict[int, Exception] = {}
        self.read_errors: dict[int, Exception] = {}
        self.submissions: list[int] = []
        self.submit_attempts: list[int] = []
        self.reads = 0
        self._barrier: threading.Barrier | None = None
        self._barrier_reads = 0

    def hold_first_reads(self, parties: int) -> None:
        """Make the first `parties` reads wait for each other."""
        self._barrier = threading.Barrier(parties)
        self._barrier_reads = parties

    def add_option(
        self,
        option_id: int,
        entry_price: str = "3000",
        exit_price: str = "3100",
        is_call: bool = True,
        amount: str = "0.1",
        executed: bool = False,
        trader: str = TRADER,
        expiry: datetime = NOW,
    ) -> None:
        option = OnChainOption(
            option_id=option_id,
            trader=trader,
            asset="ETH",
            amount=Decimal(amount),
            expiry=expiry,
            is_call=is_call,
            entry_price=Decimal(entry_price),
        )
        self.options[option_id] = option
        self.exit_prices[option_id] = Decimal(exit_price)
        if executed:
            self._execute(option_id)

    def add_zero_trader(self, option_id: int) -> None:
        self.options[option_id] = OnChainOption(option_id=option_id, trader=ZERO_ADDRESS)

    def add_receipt(
        self,
        tx_hash: str,
        status: ReceiptStatus,
        option_id: str | None = None,
        block_number: int | None = 123,
    ) -> None:
        logs = [{"option_id": option_id}] if option_id is not None else []
        self.receipts[tx_hash] = TransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            block_number=block_number if status != ReceiptStatus.PENDING else None,
            logs=logs,
        )

    def _execute(self, option_id: int) -> ExecutionEvent:
        option = self.options[option_id]
        exit_price = self.exit_prices[option_id]
        is_push = exit_price == option.entry_price
        won = not is_push and ((exit_price > option.entry_price) == option.is_call)
        payout = option.amount * Decimal("1.8") if won else Decimal("0")
        if is_push:
            payout = option.amount
        option.executed = True
        option.exit_price = exit_price
        option.is_win = won
        option.payout = payout
        return ExecutionEvent(
            option_id=option_id, won=won, is_push=is_push, payout=payout, final_price=exit_price
        )

    def read_option(self, option_id):
        oid = int(option_id)
        # Snapshot before the barrier so held readers all see the same state
        with self._lock:
            self.reads += 1
            wait = self._barrier is not None and self._barrier_reads > 0
            if wait:
                self._barrier_reads -= 1
            error = self.read_errors.get(oid)
            option = self.options.get(oid)
            snapshot = option.model_copy() if option is not None else None
        if wait:
            self._barrier.wait(timeout=5)

        if error is not None:
            raise error
        if snapshot is None or not snapshot.exists:
            raise OptionNotFound(f"Option {oid} does not exist", option_id=oid)
        return snapshot

    def submit_settlement(self, option_id):
        oid = int(option_id)
        with self._lock:
            self.submit_attempts.append(oid)
            if oid in self.submit_errors:
                raise self.submit_errors[oid]
            option = self.options.get(oid)
            if option is None or not option.exists:
                raise OptionNotFound(f"Option {oid} does not exist", option_id=oid)
            if option.executed:
                raise AlreadySettled(f"Option {oid} already executed", option_id=oid)
            event = self._execute(oid)
            self.submissions.append(oid)
            return SettlementReceipt(
                option_id=oid,
                tx_hash=f"0xsettle{oid:04d}",
                block_number=200,
                gas_used=50_000,
                execution=event,
            )

    def get_transaction_receipt(self, tx_hash):
        with self._lock:
            return self.receipts.get(tx_hash, TransactionReceipt.pending(tx_hash))

    def extract_option_id(self, receipt):
        for log in receipt.logs:
            if log.get("option_id") is not None:
                return log["option_id"]
        return None


@pytest.fixture
def ledger(tmp_path) -> BetLedger:
    return BetLedger.from_url(f"sqlite:///{tmp_path / 'ledger.db'}")


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_bet(ledger):
    """Create an ACTIVE bet that expired one minute before NOW by default."""
    counter = {"n": 0}

    def _make(
        option_id: str | None = "1",
        direction: Direction = Direction.UP,
        stake: str = "0.1",
        entry_price: str = "3000",
        holding_period: HoldingPeriod = HoldingPeriod.FIVE_MINUTES,
        created_at: datetime | None = None,
        transaction_hash: str | None = None,
    ) -> Bet:
        counter["n"] += 1
        created_at = created_at or NOW - holding_period.duration - timedelta(minutes=1)
        return ledger.create(
            Bet(
                asset="ETH",
                direction=direction,
                stake=Decimal(stake),
                holding_period=holding_period,
                entry_price=Decimal(entry_price),
                transaction_hash=transaction_hash or f"0xcreate{counter['n']:04d}",
                option_id=option_id,
                created_at=created_at,
            )
        )

    return _make
