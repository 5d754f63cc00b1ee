"""ABI fragments and event topics for the BinaryOptions contract."""

from web3 import Web3

BINARY_OPTIONS_ABI = [
    {
        "anonymous": False,
        "name": "OptionCreated",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "optionId", "type": "uint256"},
            {"indexed": True, "name": "trader", "type": "address"},
            {"indexed": False, "name": "asset", "type": "string"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "strikePrice", "type": "uint256"},
            {"indexed": False, "name": "expiryTime", "type": "uint256"},
            {"indexed": False, "name": "isCall", "type": "bool"},
        ],
    },
    {
        "anonymous": False,
        "name": "OptionExecuted",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "optionId", "type": "uint256"},
            {"indexed": False, "name": "won", "type": "bool"},
            {"indexed": False, "name": "isPush", "type": "bool"},
            {"indexed": False, "name": "payout", "type": "uint256"},
            {"indexed": False, "name": "finalPrice", "type": "uint256"},
        ],
    },
    {
        "name": "executeOption",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "optionId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "getOption",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "optionId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "id", "type": "uint256"},
                    {"name": "trader", "type": "address"},
                    {"name": "asset", "type": "string"},
                    {"name": "amount", "type": "uint256"},
                    {"name": "expiry", "type": "uint256"},
                    {"name": "isCall", "type": "bool"},
                    {"name": "executed", "type": "bool"},
                    {"name": "entryPrice", "type": "uint256"},
                    {"name": "exitPrice", "type": "uint256"},
                    {"name": "won", "type": "bool"},
                ],
            }
        ],
    },
    {
        "name": "getContractStats",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "totalOptions", "type": "uint256"},
            {"name": "contractBalance", "type": "uint256"},
        ],
    },
]

CHAINLINK_AGGREGATOR_ABI = [
    {
        "name": "latestRoundData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
    }
]

OPTION_CREATED_SIGNATURE = (
    "OptionCreated(uint256,address,string,uint256,uint256,uint256,bool)"
)
OPTION_EXECUTED_SIGNATURE = "OptionExecuted(uint256,bool,bool,uint256,uint256)"

OPTION_CREATED_TOPIC = Web3.keccak(text=OPTION_CREATED_SIGNATURE).hex().lower().removeprefix("0x")
OPTION_EXECUTED_TOPIC = Web3.keccak(text=OPTION_EXECUTED_SIGNATURE).hex().lower().removeprefix("0x")

# Payload types of OptionExecuted after the indexed optionId
OPTION_EXECUTED_DATA_TYPES = ["bool", "bool", "uint256", "uint256"]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
