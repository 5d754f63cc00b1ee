"""
BetLedger

Off-chain record of every bet and its lifecycle state.

Methods:
- create(bet) -> Bet: Insert an ACTIVE bet, deduplicated on transaction_hash
- get(bet_id) -> Bet: Fetch by id, BetNotFound if missing
- save(bet) -> Bet: Conditional update of an existing row, invariants checked against the stored row
- find_active_and_expired(now) -> List[Bet]: Settlement candidates, oldest expiry first
- find_active_without_option_id() -> List[Bet]: Bets awaiting their on-chain id
- find_by_transaction_hash(tx_hash) -> Optional[Bet]
- list_bets(status, limit) / count_by_status(): Read-only views for the CLI

The ledger holds no business logic beyond invariant enforcement. Invalid writes
raise LedgerInvariantViolation instead of being coerced.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .database import create_ledger_engine, create_session_factory, init_schema, session_scope
from .exceptions import BetNotFound, LedgerError, LedgerInvariantViolation
from .models import (
    PRICED_OUTCOMES,
    STATUS_RESULTS,
    Bet,
    BetRow,
    BetStatus,
    to_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = (
    "asset",
    "direction",
    "stake",
    "holding_period",
    "entry_price",
    "transaction_hash",
    "created_at",
    "expires_at",
)

# Columns a save may write; the rest are fixed at creation
MUTABLE_COLUMNS = (
    "exit_price",
    "payout",
    "status",
    "result",
    "option_id",
    "block_number",
    "wallet_address",
    "settlement_tx_hash",
    "settled_at",
)

OUTCOME_FIELDS = ("status", "result", "exit_price", "payout")

SAVE_ATTEMPTS = 3


def check_consistency(bet: Bet) -> None:
    """Validate a bet's own status/result/price/payout combination."""
    if bet.result not in STATUS_RESULTS[bet.status]:
        raise LedgerInvariantViolation(
            f"Bet {bet.id}: result {bet.result} is not valid for status {bet.status.value}",
            bet_id=bet.id,
        )

    if bet.status == BetStatus.ACTIVE:
        if bet.payout is not None or bet.exit_price is not None:
            raise LedgerInvariantViolation(
                f"Bet {bet.id}: ACTIVE bet cannot carry exit price or payout",
                bet_id=bet.id,
            )
        return

    if bet.payout is None:
        raise LedgerInvariantViolation(
            f"Bet {bet.id}: terminal bet requires a payout", bet_id=bet.id
        )
    if bet.payout < 0:
        raise LedgerInvariantViolation(
            f"Bet {bet.id}: payout cannot be negative", bet_id=bet.id
        )
    if (bet.status, bet.result) in PRICED_OUTCOMES and bet.exit_price is None:
        raise LedgerInvariantViolation(
            f"Bet {bet.id}: {bet.status.value}/{bet.result.value} requires an exit price",
            bet_id=bet.id,
        )


def check_transition(stored: Bet, incoming: Bet) -> bool:
    """Validate a write against the stored row.

    Returns False when the write is an idempotent repeat of a terminal outcome
    and nothing needs to be written.
    """
    for field in IMMUTABLE_FIELDS:
        if getattr(stored, field) != getattr(incoming, field):
            raise LedgerInvariantViolation(
                f"Bet {stored.id}: {field} is immutable "
                f"({getattr(stored, field)!r} -> {getattr(incoming, field)!r})",
                bet_id=stored.id,
            )

    if stored.option_id is not None and incoming.option_id != stored.option_id:
        raise LedgerInvariantViolation(
            f"Bet {stored.id}: option_id is already {stored.option_id}",
            bet_id=stored.id,
        )

    if stored.is_terminal:
        if all(getattr(stored, f) == getattr(incoming, f) for f in OUTCOME_FIELDS):
            return False
        raise LedgerInvariantViolation(
            f"Bet {stored.id}: already {stored.status.value}/{stored.result.value}, "
            f"refusing {incoming.status.value}/"
            f"{incoming.result.value if incoming.result else None}",
            bet_id=stored.id,
        )

    return True


class BetLedger:
    """SQLAlchemy-backed repository for bets."""

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    @classmethod
    def from_url(cls, url: str, create_tables: bool = True) -> "BetLedger":
        engine = create_ledger_engine(url)
        if create_tables:
            init_schema(engine)
        return cls(create_session_factory(engine))

    @staticmethod
    def _normalize(bet: Bet) -> Bet:
        # model_copy(update=...) skips validation; re-run it before persisting
        return Bet.model_validate(bet.model_dump())

    def create(self, bet: Bet) -> Bet:
        bet = self._normalize(bet)
        if bet.status != BetStatus.ACTIVE or bet.result is not None:
            raise LedgerInvariantViolation(
                f"Bet {bet.id}: new bets must be ACTIVE with no result", bet_id=bet.id
            )
        check_consistency(bet)
        if bet.expires_at != bet.created_at + bet.holding_period.duration:
            raise LedgerInvariantViolation(
                f"Bet {bet.id}: expires_at must equal created_at + {bet.holding_period.value}",
                bet_id=bet.id,
            )

        with session_scope(self._sessions) as session:
            existing = session.scalars(
                select(BetRow).where(BetRow.transaction_hash == bet.transaction_hash)
            ).first()
            if existing is not None:
                logger.info(
                    f"Bet for transaction {bet.transaction_hash} already recorded as {existing.id}"
                )
                return Bet.model_validate(existing)

            values = bet.column_values()
            values["updated_at"] = utcnow()
            row = BetRow(**values)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                existing = session.scalars(
                    select(BetRow).where(BetRow.transaction_hash == bet.transaction_hash)
                ).first()
                if existing is not None:
                    return Bet.model_validate(existing)
                raise LedgerInvariantViolation(
                    f"Bet {bet.id}: insert rejected: {e.orig}", bet_id=bet.id
                ) from e

            logger.info(
                f"Recorded bet {row.id}: {row.asset} {row.direction} {row.stake} "
                f"for {row.holding_period} (tx {row.transaction_hash})"
            )
            return Bet.model_validate(row)

    def get(self, bet_id: str) -> Bet:
        with session_scope(self._sessions) as session:
            row = session.get(BetRow, bet_id)
            if row is None:
                raise BetNotFound(f"Bet {bet_id} not found", bet_id=bet_id)
            return Bet.model_validate(row)

    def save(self, bet: Bet) -> Bet:
        bet = self._normalize(bet)
        check_consistency(bet)

        for _ in range(SAVE_ATTEMPTS):
            with session_scope(self._sessions) as session:
                row = session.scalars(
                    select(BetRow).where(BetRow.id == bet.id).with_for_update()
                ).first()
                if row is None:
                    raise BetNotFound(
                        f"Bet {bet.id} not found; new bets go through create()", bet_id=bet.id
                    )

                stored = Bet.model_validate(row)
                if not check_transition(stored, bet):
                    logger.debug(f"Bet {bet.id}: identical terminal write ignored")
                    return stored

                now = utcnow()
                values = bet.column_values()
                if bet.is_terminal and values["settled_at"] is None:
                    values["settled_at"] = now
                changes = {column: values[column] for column in MUTABLE_COLUMNS}
                changes["updated_at"] = now

                # Only write over the state check_transition just approved
                option_guard = (
                    BetRow.option_id.is_(None)
                    if row.option_id is None
                    else BetRow.option_id == row.option_id
                )
                written = session.execute(
                    update(BetRow)
                    .where(BetRow.id == bet.id)
                    .where(BetRow.status == row.status)
                    .where(option_guard)
                    .values(**changes)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if written == 0:
                    session.rollback()
                    logger.info(f"Bet {bet.id} changed during save, re-checking")
                    continue
                session.commit()
                session.refresh(row)

                if bet.is_terminal:
                    logger.info(
                        f"Bet {bet.id} settled: {bet.status.value}/{bet.result.value} "
                        f"exit={bet.exit_price} payout={bet.payout}"
                    )
                return Bet.model_validate(row)

        raise LedgerError(
            f"Bet {bet.id}: row kept changing after {SAVE_ATTEMPTS} attempts", bet_id=bet.id
        )

    def find_active_and_expired(self, now: datetime, limit: int | None = None) -> list[Bet]:
        stmt = (
            select(BetRow)
            .where(BetRow.status == BetStatus.ACTIVE.value)
            .where(BetRow.expires_at <= to_utc(now))
            .order_by(BetRow.expires_at.asc(), BetRow.created_at.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        with session_scope(self._sessions) as session:
            return [Bet.model_validate(row) for row in session.scalars(stmt)]

    def find_active_without_option_id(self, limit: int | None = None) -> list[Bet]:
        stmt = (
            select(BetRow)
            .where(BetRow.status == BetStatus.ACTIVE.value)
            .where(BetRow.option_id.is_(None))
            .order_by(BetRow.created_at.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        with session_scope(self._sessions) as session:
            return [Bet.model_validate(row) for row in session.scalars(stmt)]

    def find_by_transaction_hash(self, tx_hash: str) -> Bet | None:
        with session_scope(self._sessions) as session:
            row = session.scalars(
                select(BetRow).where(BetRow.transaction_hash == tx_hash)
            ).first()
            return Bet.model_validate(row) if row is not None else None

    def list_bets(self, status: BetStatus | None = None, limit: int = 50) -> list[Bet]:
        stmt = select(BetRow).order_by(BetRow.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(BetRow.status == status.value)
        with session_scope(self._sessions) as session:
            return [Bet.model_validate(row) for row in session.scalars(stmt)]

    def count_by_status(self) -> dict[BetStatus, int]:
        counts = {status: 0 for status in BetStatus}
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(BetRow.status, func.count()).group_by(BetRow.status)
            ).all()
        for status, count in rows:
            counts[BetStatus(status)] = count
        return counts
