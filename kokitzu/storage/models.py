"""Bet record: SQLAlchemy row plus the pydantic snapshot handed to callers."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

AMOUNT_QUANTUM = Decimal("0.00000001")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values (as SQLite returns them) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Direction(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class BetStatus(str, Enum):
    ACTIVE = "ACTIVE"
    WON = "WON"
    LOST = "LOST"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not BetStatus.ACTIVE


class BetResult(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    DRAW = "DRAW"
    INVALID = "INVALID"
    ERROR = "ERROR"


_PERIOD_SECONDS = {
    "ONE_MINUTE": 60,
    "FIVE_MINUTES": 5 * 60,
    "FIFTEEN_MINUTES": 15 * 60,
    "THIRTY_MINUTES": 30 * 60,
    "ONE_HOUR": 60 * 60,
    "FOUR_HOURS": 4 * 60 * 60,
    "ONE_DAY": 24 * 60 * 60,
}


class HoldingPeriod(str, Enum):
    ONE_MINUTE = "ONE_MINUTE"
    FIVE_MINUTES = "FIVE_MINUTES"
    FIFTEEN_MINUTES = "FIFTEEN_MINUTES"
    THIRTY_MINUTES = "THIRTY_MINUTES"
    ONE_HOUR = "ONE_HOUR"
    FOUR_HOURS = "FOUR_HOURS"
    ONE_DAY = "ONE_DAY"

    @property
    def seconds(self) -> int:
        return _PERIOD_SECONDS[self.value]

    @property
    def duration(self) -> timedelta:
        return timedelta(seconds=self.seconds)


# status -> results it may carry
STATUS_RESULTS: dict[BetStatus, frozenset] = {
    BetStatus.ACTIVE: frozenset({None}),
    BetStatus.WON: frozenset({BetResult.WIN}),
    BetStatus.LOST: frozenset({BetResult.LOSS, BetResult.INVALID, BetResult.ERROR}),
    BetStatus.EXPIRED: frozenset({BetResult.DRAW, BetResult.LOSS}),
}

# Outcomes read from an executed on-chain option always carry its exit price
PRICED_OUTCOMES = frozenset(
    {
        (BetStatus.WON, BetResult.WIN),
        (BetStatus.LOST, BetResult.LOSS),
        (BetStatus.EXPIRED, BetResult.DRAW),
    }
)


class BetRow(Base):
    """Persisted bet record."""

    __tablename__ = "bets"

    id = Column(String(40), primary_key=True)

    # Bet terms
    asset = Column(String(16), nullable=False)
    direction = Column(String(4), nullable=False)
    stake = Column(Numeric(28, 8), nullable=False)
    holding_period = Column(String(20), nullable=False)
    entry_price = Column(Numeric(28, 8), nullable=False)

    # Settlement
    exit_price = Column(Numeric(28, 8), nullable=True)
    payout = Column(Numeric(28, 8), nullable=True)
    status = Column(String(8), nullable=False, default="ACTIVE")
    result = Column(String(8), nullable=True)
    settlement_tx_hash = Column(String(66), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    # On-chain reference
    transaction_hash = Column(String(66), nullable=False, unique=True)
    option_id = Column(String(78), nullable=True)
    block_number = Column(BigInteger, nullable=True)
    wallet_address = Column(String(42), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("direction IN ('UP', 'DOWN')", name="valid_bet_direction"),
        CheckConstraint(
            "status IN ('ACTIVE', 'WON', 'LOST', 'EXPIRED')",
            name="valid_bet_status",
        ),
        CheckConstraint(
            "result IS NULL OR result IN ('WIN', 'LOSS', 'DRAW', 'INVALID', 'ERROR')",
            name="valid_bet_result",
        ),
        CheckConstraint("stake > 0", name="positive_stake"),
        CheckConstraint("payout IS NULL OR payout >= 0", name="non_negative_payout"),
        Index("idx_bets_status_expires", "status", "expires_at"),
        Index("idx_bets_option_id", "option_id"),
    )

    def __repr__(self) -> str:
        return f"<BetRow {self.id} {self.asset} {self.direction} {self.status}>"


class Bet(BaseModel):
    """Snapshot of a bet as stored in the ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: f"bet-{uuid.uuid4().hex[:16]}")
    asset: str
    direction: Direction
    stake: Decimal = Field(gt=0)
    holding_period: HoldingPeriod
    entry_price: Decimal
    exit_price: Decimal | None = None
    payout: Decimal | None = None
    status: BetStatus = BetStatus.ACTIVE
    result: BetResult | None = None
    transaction_hash: str
    option_id: str | None = None
    block_number: int | None = None
    wallet_address: str | None = None
    settlement_tx_hash: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None
    settled_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("stake", "entry_price", "exit_price", "payout", mode="after")
    @classmethod
    def quantize_amount(cls, v: Decimal | None) -> Decimal | None:
        if v is None:
            return None
        return v.quantize(AMOUNT_QUANTUM)

    @field_validator("created_at", "expires_at", "settled_at", "updated_at", mode="after")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        return to_utc(v) if v is not None else None

    @field_validator("asset", mode="after")
    @classmethod
    def upper_asset(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def default_expiry(self) -> "Bet":
        if self.expires_at is None:
            self.expires_at = self.created_at + self.holding_period.duration
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def on_chain_ref(self) -> tuple[str, str | None, int | None]:
        return (self.transaction_hash, self.option_id, self.block_number)

    def column_values(self) -> dict:
        """Field values ready for a BetRow (enums flattened to their names)."""
        values = self.model_dump()
        return {k: v.value if isinstance(v, Enum) else v for k, v in values.items()}
