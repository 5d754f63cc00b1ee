from typing import Literal

from pydantic import BaseModel, Field


class OracleConfig(BaseModel):
    """Configuration for the reference price feed."""

    source: Literal["chainlink", "coingecko"] = "chainlink"
    price_decimals: int = 8

    # Chainlink AggregatorV3 proxies (Sepolia)
    chainlink_feeds: dict[str, str] = Field(
        default_factory=lambda: {
            "ETH": "0x694AA1769357215DE4FAC081bf1f309aDC325306",
            "BTC": "0x1b44F3514812d835EB1BDB0acB33d3fA3351Ee43",
            "LINK": "0xc59E3633BAAC79493d908e63626716e204A45EdF",
        }
    )

    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_ids: dict[str, str] = Field(
        default_factory=lambda: {
            "BTC": "bitcoin",
            "ETH": "ethereum",
            "LINK": "chainlink",
            "SOL": "solana",
            "MATIC": "matic-network",
        }
    )
    timeout_seconds: float = 10.0
