from .client import ChainGateway, create_chain_gateway, create_web3
from .config import ChainConfig
from .exceptions import (
    AlreadySettled,
    ChainGatewayError,
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
    ReceiptStatus,
    SettlementReceipt,
    TransactionReceipt,
)

__all__ = [
    "ChainGateway",
    "create_chain_gateway",
    "create_web3",
    "ChainConfig",
    "ChainGatewayError",
    "ChainUnavailable",
    "OptionNotFound",
    "OptionNotExpired",
    "SignerNotConfigured",
    "AlreadySettled",
    "SubmissionFailed",
    "TransactionPending",
    "ContractStats",
    "ExecutionEvent",
    "OnChainOption",
    "ReceiptStatus",
    "SettlementReceipt",
    "TransactionReceipt",
]
