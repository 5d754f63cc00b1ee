"""Reference price lookups from Chainlink aggregators or CoinGecko."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx
import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from kokitzu.services.chain.abi import CHAINLINK_AGGREGATOR_ABI
from kokitzu.services.rate_limit import RateLimited, RateLimiter

from .config import OracleConfig
from .exceptions import OracleUnavailable
from .models import PriceQuote

logger = logging.getLogger(__name__)


class PriceOracleClient:
    """Latest-price lookups, rate limited and failing with OracleUnavailable.

    The Chainlink source spends the shared on-chain limiter. The CoinGecko
    source is off-chain and gets its own limiter.
    """

    def __init__(
        self,
        config: OracleConfig | None = None,
        limiter: RateLimiter | None = None,
        web3: Web3 | None = None,
        api_key: str = "",
        http_client: httpx.Client | None = None,
        http_limiter: RateLimiter | None = None,
    ):
        self.config = config or OracleConfig()
        self.limiter = limiter or RateLimiter()
        self.web3 = web3
        self.api_key = api_key
        self._http = http_client
        self._http_limiter = http_limiter or RateLimiter(min_interval_seconds=1.0)
        self._feeds: dict[str, Any] = {}
        logger.info(f"Initialized PriceOracleClient (source={self.config.source})")

    def __enter__(self) -> "PriceOracleClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            headers = {"accept": "application/json"}
            if self.api_key:
                headers["x-cg-demo-api-key"] = self.api_key
            self._http = httpx.Client(
                base_url=self.config.coingecko_base_url,
                timeout=self.config.timeout_seconds,
                headers=headers,
            )
        return self._http

    def get_price(self, asset: str) -> Decimal:
        return self.get_quote(asset).price

    def get_quote(self, asset: str) -> PriceQuote:
        asset = asset.upper()
        if self.config.source == "coingecko":
            return self._coingecko_quote(asset)
        return self._chainlink_quote(asset)

    def _feed_contract(self, asset: str) -> Any:
        if asset not in self._feeds:
            address = self.config.chainlink_feeds.get(asset)
            if not address:
                raise OracleUnavailable(
                    f"No Chainlink feed configured for {asset}", asset=asset, source="chainlink"
                )
            if self.web3 is None:
                raise OracleUnavailable(
                    "Chainlink source needs an RPC connection", asset=asset, source="chainlink"
                )
            self._feeds[asset] = self.web3.eth.contract(
                address=Web3.to_checksum_address(address), abi=CHAINLINK_AGGREGATOR_ABI
            )
        return self._feeds[asset]

    def _chainlink_quote(self, asset: str) -> PriceQuote:
        feed = self._feed_contract(asset)
        try:
            _, answer, _, updated_at, _ = self.limiter.execute(
                f"latestRoundData({asset})", feed.functions.latestRoundData().call
            )
        except RateLimited as e:
            raise OracleUnavailable(
                f"Chainlink feed for {asset} is throttled: {e}", asset=asset, source="chainlink"
            ) from e
        except (requests.ConnectionError, requests.Timeout, Web3Exception, ValueError) as e:
            raise OracleUnavailable(
                f"Chainlink feed for {asset} unreachable: {e}", asset=asset, source="chainlink"
            ) from e

        if answer <= 0:
            raise OracleUnavailable(
                f"Chainlink feed for {asset} returned no price", asset=asset, source="chainlink"
            )

        price = Decimal(answer) / Decimal(10**self.config.price_decimals)
        logger.debug(f"Chainlink {asset}/USD = {price}")
        return PriceQuote(
            asset=asset,
            price=price,
            updated_at=datetime.fromtimestamp(updated_at, tz=timezone.utc) if updated_at else None,
            source="chainlink",
        )

    def _coingecko_quote(self, asset: str) -> PriceQuote:
        coin_id = self.config.coingecko_ids.get(asset)
        if not coin_id:
            raise OracleUnavailable(
                f"No CoinGecko id configured for {asset}", asset=asset, source="coingecko"
            )

        def _fetch() -> dict[str, Any]:
            response = self.http.get(
                "/simple/price",
                params={
                    "ids": coin_id,
                    "vs_currencies": "usd",
                    "include_last_updated_at": "true",
                },
            )
            response.raise_for_status()
            return response.json()

        try:
            payload = self._http_limiter.execute(f"simple/price({coin_id})", _fetch)
        except RateLimited as e:
            raise OracleUnavailable(
                f"CoinGecko throttled {asset}: {e}", asset=asset, source="coingecko"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise OracleUnavailable(
                f"CoinGecko request for {asset} failed: {e}", asset=asset, source="coingecko"
            ) from e

        entry = payload.get(coin_id) or {}
        usd = entry.get("usd")
        if usd is None:
            raise OracleUnavailable(
                f"CoinGecko returned no price for {asset}", asset=asset, source="coingecko"
            )

        updated_at = entry.get("last_updated_at")
        return PriceQuote(
            asset=asset,
            price=Decimal(str(usd)),
            updated_at=datetime.fromtimestamp(updated_at, tz=timezone.utc) if updated_at else None,
            source="coingecko",
        )


def create_price_oracle(
    config: OracleConfig,
    limiter: RateLimiter,
    web3: Web3 | None = None,
    api_key: str = "",
) -> PriceOracleClient:
    """Factory function to create PriceOracleClient for the configured source."""
    return PriceOracleClient(config=config, limiter=limiter, web3=web3, api_key=api_key)
