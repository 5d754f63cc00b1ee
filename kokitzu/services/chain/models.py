from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .abi import ZERO_ADDRESS


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TransactionReceipt(BaseModel):
    """Receipt lookup result; PENDING when the transaction is not mined yet."""

    tx_hash: str
    status: ReceiptStatus = ReceiptStatus.PENDING
    block_number: int | None = None
    gas_used: int | None = None
    logs: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.status == ReceiptStatus.PENDING

    @property
    def succeeded(self) -> bool:
        return self.status == ReceiptStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == ReceiptStatus.FAILED

    @classmethod
    def pending(cls, tx_hash: str) -> TransactionReceipt:
        return cls(tx_hash=tx_hash, status=ReceiptStatus.PENDING)

    @classmethod
    def from_web3(cls, tx_hash: str, data: Any) -> TransactionReceipt:
        status = ReceiptStatus.SUCCESS if data.get("status") == 1 else ReceiptStatus.FAILED
        return cls(
            tx_hash=tx_hash,
            status=status,
            block_number=data.get("blockNumber"),
            gas_used=data.get("gasUsed"),
            logs=[dict(log) for log in data.get("logs", [])],
        )


class ExecutionEvent(BaseModel):
    """Decoded OptionExecuted log."""

    option_id: int
    won: bool
    is_push: bool
    payout: Decimal
    final_price: Decimal


class OnChainOption(BaseModel):
    option_id: int
    trader: str
    asset: str = ""
    amount: Decimal = Decimal("0")
    expiry: datetime | None = None
    is_call: bool = True
    executed: bool = False
    entry_price: Decimal = Decimal("0")
    exit_price: Decimal = Decimal("0")
    is_win: bool = False
    payout: Decimal | None = None

    @property
    def exists(self) -> bool:
        return self.trader.lower() != ZERO_ADDRESS

    @property
    def is_push(self) -> bool:
        return self.executed and self.entry_price == self.exit_price


class SettlementReceipt(BaseModel):
    """Confirmed executeOption transaction."""

    option_id: int
    tx_hash: str
    block_number: int | None = None
    gas_used: int | None = None
    execution: ExecutionEvent | None = None


class ContractStats(BaseModel):
    total_options: int = 0
    contract_balance: Decimal = Decimal("0")
