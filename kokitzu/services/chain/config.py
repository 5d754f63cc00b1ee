from pydantic import BaseModel


class ChainConfig(BaseModel):
    """Configuration for the on-chain option contract gateway."""

    chain_id: int = 11155111  # Sepolia
    request_timeout_seconds: float = 30.0
    poa_middleware: bool = False
    deployment_block: int = 0
    settle_gas_limit: int = 200_000
    max_fee_per_gas_gwei: float = 20.0
    max_priority_fee_per_gas_gwei: float = 2.0
    receipt_timeout_seconds: float = 60.0
    receipt_poll_seconds: float = 2.0
    price_decimals: int = 8
    fallback_payout_multiplier: float = 1.8

    @property
    def price_scale(self) -> int:
        """Divisor turning contract fixed-point prices into decimals."""
        return 10 ** self.price_decimals
