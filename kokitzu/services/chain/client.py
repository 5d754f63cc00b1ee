from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

import requests
from eth_abi import decode as abi_decode
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from kokitzu.services.rate_limit import RateLimiter

from .abi import (
    BINARY_OPTIONS_ABI,
    OPTION_CREATED_TOPIC,
    OPTION_EXECUTED_DATA_TYPES,
    OPTION_EXECUTED_TOPIC,
)
from .config import ChainConfig
from .exceptions import (
    AlreadySettled,
    ChainUnavailable,
    OptionNotExpired,
    OptionNotFound,
    SignerNotConfigured,
    SubmissionFailed,
    TransactionPending,
)
from .models import (
    ContractStats,
    ExecutionEvent,
    OnChainOption,
    SettlementReceipt,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal(10**18)


def _hex(value: Any) -> str:
    """Lower-case hex without 0x prefix for bytes, HexBytes or str."""
    if isinstance(value, str):
        return value.lower().removeprefix("0x")
    return bytes(value).hex().lower()


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value.removeprefix("0x"))
    return bytes(value)


def _from_wei(value: int) -> Decimal:
    return Decimal(value) / WEI_PER_ETHER


def create_web3(rpc_url: str, config: ChainConfig | None = None) -> Web3:
    config = config or ChainConfig()
    w3 = Web3(
        Web3.HTTPProvider(
            rpc_url, request_kwargs={"timeout": config.request_timeout_seconds}
        )
    )
    if config.poa_middleware:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


class ChainGateway:
    def __init__(
        self,
        web3: Web3,
        contract_address: str,
        limiter: RateLimiter,
        config: ChainConfig | None = None,
        private_key: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or ChainConfig()
        self.w3 = web3
        self.limiter = limiter
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = web3.eth.contract(
            address=self.contract_address, abi=BINARY_OPTIONS_ABI
        )
        self._clock = clock
        self._sleep = sleep
        self._account = Account.from_key(private_key) if private_key else None

        logger.info(
            f"Initialized ChainGateway (contract={self.contract_address}, "
            f"signer={'enabled' if self._account else 'disabled'})"
        )

    @property
    def signer_address(self) -> str | None:
        return self._account.address if self._account else None

    def _rpc(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return self.limiter.execute(label, fn, *args, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ChainUnavailable(f"{label}: RPC endpoint unreachable: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_option(self, option_id: str | int, include_payout: bool = True) -> OnChainOption:
        oid = int(option_id)
        try:
            raw = self._rpc(
                f"getOption({oid})", self.contract.functions.getOption(oid).call
            )
        except ContractLogicError as e:
            if "not exist" in str(e).lower():
                raise OptionNotFound(
                    f"Option {oid} does not exist", option_id=oid
                ) from e
            raise

        option = self._parse_option(raw)
        if not option.exists:
            raise OptionNotFound(
                f"Option {oid} has no trader (never assigned)", option_id=oid
            )

        if option.executed and include_payout:
            option.payout = self._execution_payout(option)
        return option

    def _parse_option(self, raw: Any) -> OnChainOption:
        (
            option_id,
            trader,
            asset,
            amount,
            expiry,
            is_call,
            executed,
            entry_price,
            exit_price,
            won,
        ) = raw
        scale = Decimal(self.config.price_scale)
        return OnChainOption(
            option_id=int(option_id),
            trader=str(trader),
            asset=asset,
            amount=_from_wei(amount),
            expiry=datetime.fromtimestamp(int(expiry), tz=timezone.utc) if expiry else None,
            is_call=bool(is_call),
            executed=bool(executed),
            entry_price=Decimal(entry_price) / scale,
            exit_price=Decimal(exit_price) / scale,
            is_win=bool(won),
        )

    def _execution_payout(self, option: OnChainOption) -> Decimal:
        event = self.find_execution_event(option.option_id)
        if event is not None:
            return event.payout
        if not option.is_win:
            return Decimal("0")
        payout = option.amount * Decimal(str(self.config.fallback_payout_multiplier))
        logger.warning(
            f"OptionExecuted log not found for option {option.option_id}; "
            f"estimating payout as {payout} "
            f"({self.config.fallback_payout_multiplier}x amount)"
        )
        return payout

    def find_execution_event(self, option_id: str | int) -> ExecutionEvent | None:
        oid = int(option_id)
        log_filter = {
            "address": self.contract_address,
            "fromBlock": self.config.deployment_block,
            "toBlock": "latest",
            "topics": ["0x" + OPTION_EXECUTED_TOPIC, "0x" + oid.to_bytes(32, "big").hex()],
        }
        try:
            logs = self._rpc(f"eth_getLogs(OptionExecuted {oid})", self.w3.eth.get_logs, log_filter)
        except (Web3Exception, ValueError) as e:
            logger.warning(f"Failed to fetch OptionExecuted logs for option {oid}: {e}")
            return None

        for log in logs:
            event = self.decode_execution_event(log)
            if event is not None and event.option_id == oid:
                return event
        return None

    def decode_execution_event(self, log: Any) -> ExecutionEvent | None:
        topics = [_hex(topic) for topic in log.get("topics", [])]
        if len(topics) < 2 or topics[0] != OPTION_EXECUTED_TOPIC:
            return None
        won, is_push, payout, final_price = abi_decode(
            OPTION_EXECUTED_DATA_TYPES, _as_bytes(log["data"])
        )
        return ExecutionEvent(
            option_id=int(topics[1], 16),
            won=bool(won),
            is_push=bool(is_push),
            payout=_from_wei(payout),
            final_price=Decimal(final_price) / Decimal(self.config.price_scale),
        )

    def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        try:
            data = self._rpc(
                f"eth_getTransactionReceipt({tx_hash[:10]})",
                self.w3.eth.get_transaction_receipt,
                tx_hash,
            )
        except TransactionNotFound:
            return TransactionReceipt.pending(tx_hash)

        if data is None:
            return TransactionReceipt.pending(tx_hash)
        return TransactionReceipt.from_web3(tx_hash, data)

    def extract_option_id(self, receipt: TransactionReceipt) -> str | None:
        contract = _hex(self.contract_address)
        for log in receipt.logs:
            if _hex(log.get("address", "")) != contract:
                continue
            topics = [_hex(topic) for topic in log.get("topics", [])]
            if len(topics) >= 2 and topics[0] == OPTION_CREATED_TOPIC:
                return str(int(topics[1], 16))
        return None

    def get_contract_stats(self) -> ContractStats:
        total, balance = self._rpc(
            "getContractStats", self.contract.functions.getContractStats().call
        )
        return ContractStats(total_options=int(total), contract_balance=_from_wei(balance))

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def submit_settlement(self, option_id: str | int) -> SettlementReceipt:
        oid = int(option_id)
        if self._account is None:
            raise SignerNotConfigured(
                "No signer configured - cannot execute options", option_id=oid
            )

        execute = self.contract.functions.executeOption(oid)

        # Simulate first so reverts surface with their reason and cost no gas
        try:
            self._rpc(f"executeOption({oid}) preflight", execute.call, {"from": self._account.address})
        except ContractLogicError as e:
            raise self._classify_revert(e, oid) from e

        try:
            nonce = self._rpc(
                "eth_getTransactionCount",
                self.w3.eth.get_transaction_count,
                self._account.address,
                "pending",
            )
            tx = execute.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": nonce,
                    "gas": self.config.settle_gas_limit,
                    "maxFeePerGas": Web3.to_wei(self.config.max_fee_per_gas_gwei, "gwei"),
                    "maxPriorityFeePerGas": Web3.to_wei(
                        self.config.max_priority_fee_per_gas_gwei, "gwei"
                    ),
                    "chainId": self.config.chain_id,
                }
            )
        except ContractLogicError as e:
            raise self._classify_revert(e, oid) from e
        except (Web3Exception, ValueError) as e:
            raise SubmissionFailed(
                f"executeOption({oid}) could not be built: {e}", option_id=oid
            ) from e

        signed = self._account.sign_transaction(tx)
        tx_hash = "0x" + _hex(signed.hash)
        self._broadcast(signed.raw_transaction, tx_hash, oid)
        logger.info(f"Execution transaction sent for option {oid}: {tx_hash}")

        receipt = self._wait_for_receipt(tx_hash, oid)
        if receipt.failed:
            raise SubmissionFailed(
                f"executeOption({oid}) reverted on-chain", option_id=oid, tx_hash=tx_hash
            )

        execution = None
        for log in receipt.logs:
            if _hex(log.get("address", "")) != _hex(self.contract_address):
                continue
            execution = self.decode_execution_event(log)
            if execution is not None:
                break

        logger.info(
            f"Execution confirmed for option {oid}: {tx_hash} "
            f"(block {receipt.block_number}, gas {receipt.gas_used})"
        )
        return SettlementReceipt(
            option_id=oid,
            tx_hash=tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            execution=execution,
        )

    def _broadcast(self, raw_transaction: bytes, tx_hash: str, option_id: int) -> None:
        """Send a signed transaction, accepting a node that already has it.

        A throttled reply can hide a broadcast that went through, so the retry
        may be answered with "already known" or "nonce too low" for this hash.
        """
        try:
            self._rpc("eth_sendRawTransaction", self.w3.eth.send_raw_transaction, raw_transaction)
        except ContractLogicError as e:
            raise self._classify_revert(e, option_id, tx_hash) from e
        except (Web3Exception, ValueError) as e:
            message = str(e).lower()
            if "already known" in message:
                logger.info(f"Node already has execution tx {tx_hash} for option {option_id}")
                return
            if "nonce too low" in message and self._transaction_known(tx_hash):
                logger.info(f"Execution tx {tx_hash} for option {option_id} was already accepted")
                return
            raise SubmissionFailed(
                f"executeOption({option_id}) rejected: {e}", option_id=option_id, tx_hash=tx_hash
            ) from e

    def _transaction_known(self, tx_hash: str) -> bool:
        try:
            self._rpc(f"eth_getTransactionByHash({tx_hash[:10]})", self.w3.eth.get_transaction, tx_hash)
        except TransactionNotFound:
            return False
        return True

    def _classify_revert(
        self, error: ContractLogicError, option_id: int, tx_hash: str | None = None
    ) -> Exception:
        message = str(error).lower()
        if "already executed" in message:
            return AlreadySettled(f"Option {option_id} already executed", option_id=option_id)
        if "not expired" in message:
            return OptionNotExpired(f"Option {option_id} has not expired yet", option_id=option_id)
        if "not exist" in message:
            return OptionNotFound(f"Option {option_id} does not exist", option_id=option_id)
        return SubmissionFailed(
            f"executeOption({option_id}) reverted: {error}", option_id=option_id, tx_hash=tx_hash
        )

    def _wait_for_receipt(self, tx_hash: str, option_id: int) -> TransactionReceipt:
        deadline = self._clock() + self.config.receipt_timeout_seconds
        while True:
            receipt = self.get_transaction_receipt(tx_hash)
            if not receipt.is_pending:
                return receipt
            if self._clock() >= deadline:
                raise TransactionPending(
                    f"No receipt for {tx_hash} after {self.config.receipt_timeout_seconds:.0f}s",
                    option_id=option_id,
                    tx_hash=tx_hash,
                )
            self._sleep(self.config.receipt_poll_seconds)


def create_chain_gateway(
    rpc_url: str,
    contract_address: str,
    limiter: RateLimiter,
    config: ChainConfig | None = None,
    private_key: str | None = None,
    web3: Web3 | None = None,
) -> ChainGateway:
    config = config or ChainConfig()
    web3 = web3 or create_web3(rpc_url, config)
    return ChainGateway(web3, contract_address, limiter, config, private_key or None)
