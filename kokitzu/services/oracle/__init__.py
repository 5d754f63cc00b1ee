from .client import PriceOracleClient, create_price_oracle
from .config import OracleConfig
from .exceptions import OracleUnavailable
from .models import PriceQuote

__all__ = [
    "PriceOracleClient",
    "create_price_oracle",
    "OracleConfig",
    "OracleUnavailable",
    "PriceQuote",
]
