"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kokitzu.services.chain.config import ChainConfig
from kokitzu.services.oracle.config import OracleConfig

logger = logging.getLogger(__name__)


class RateLimitConfig(BaseModel):
    """Shared RPC budget: minimum spacing plus bounded retry on throttling."""

    min_interval_seconds: float = 1.0
    max_retries: int = 3
    base_delay_seconds: float = 2.0


class SchedulerConfig(BaseModel):
    """Job scheduling intervals in seconds."""

    settlement_interval_seconds: int = 60
    resolver_interval_seconds: int = 60


class SettlementConfig(BaseModel):
    """Settlement scanner and resolver parameters."""

    stale_pending_minutes: int = 60
    max_bets_per_tick: int = 100


_YAML_SECTIONS = ["chain", "oracle", "rate_limit", "scheduler", "settlement"]


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")
    database_url: str = ""

    # Chain access
    rpc_url: str = ""
    private_key: str = ""
    contract_address: str = "0x192e65C1EaCfbE5d7A2f3C2CD287513713B283C6"

    # API Keys
    coingecko_api_key: str = ""
    logfire_token: str = ""

    # Nested configuration sections
    chain: ChainConfig = Field(default_factory=ChainConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    settlement: SettlementConfig = Field(default_factory=SettlementConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    @property
    def ledger_url(self) -> str:
        """SQLAlchemy URL for the bet ledger, defaulting to SQLite in data_dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'kokitzu.db'}"

    @property
    def can_sign(self) -> bool:
        return bool(self.private_key)

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m kokitzu init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config {config_path}: {e}")
            raise

        if not yaml_config:
            logger.warning(f"Empty config file: {config_path}")
            return

        # A section left empty in the file ("chain:") keeps its defaults
        for section_name in _YAML_SECTIONS:
            overrides = yaml_config.get(section_name) or {}
            if overrides:
                section = getattr(self, section_name)
                setattr(
                    self,
                    section_name,
                    section.model_validate({**section.model_dump(), **overrides}),
                )

        logger.info(f"Loaded configuration from {config_path}")


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
