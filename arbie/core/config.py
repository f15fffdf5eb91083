"""
Configuration management for Arbie.

Supports:
- Secrets and environment: .env file / process environment
- Business rules: YAML config (token universe, venues, thresholds)

Configuration is loaded once at startup; there is no hot reload.
"""

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

from arbie.core.errors import ConfigurationError

# Prices and profits are integer micro-units of the quote token.
PRICE_SCALE = 10**6


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==============================================
    # Environment
    # ==============================================
    arbie_env: str = Field(default="local", description="Environment: local/cloud")
    log_level: str = Field(default="INFO")
    config_path: Optional[str] = Field(default=None, description="Override config.yaml location")

    # ==============================================
    # Chain access
    # ==============================================
    rpc_url: str = Field(default="https://mainnet.base.org", description="JSON-RPC endpoint")
    private_key: Optional[str] = Field(default=None, description="Signing key for live trading")
    arbitrage_contract_address: Optional[str] = Field(default=None)
    dry_run: bool = Field(default=True, description="Paper trading, nothing is broadcast")

    # ==============================================
    # Database
    # ==============================================
    database_url: str = Field(default="sqlite:///data/arbie.db")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    @property
    def is_local(self) -> bool:
        return self.arbie_env == "local"


def _check_address(value: str) -> str:
    if not Web3.is_address(value):
        raise ValueError(f"Not a valid address: {value}")
    return Web3.to_checksum_address(value)


class TokenConfig(BaseModel):
    """One entry of the token universe."""

    address: str
    symbol: str
    decimals: int = Field(ge=0, le=36)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _check_address(v)


class VenueConfig(BaseModel):
    """
    One DEX venue.

    `kind` selects the price source adapter; `addresses` holds whatever
    contracts the adapter needs (factory, router); `options` carries
    adapter-specific knobs (e.g. URL template for HTTP sources).
    """

    name: str = Field(min_length=1)
    kind: str
    addresses: dict[str, str] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("addresses")
    @classmethod
    def validate_addresses(cls, v: dict[str, str]) -> dict[str, str]:
        return {key: _check_address(addr) for key, addr in v.items()}


class EngineConfig(BaseModel):
    """Validated engine configuration (YAML business rules merged with Settings)."""

    quote_token: TokenConfig
    tokens: list[TokenConfig] = Field(min_length=1)
    venues: list[VenueConfig] = Field(min_length=2)

    # Profitability
    min_profit_absolute: Decimal = Field(default=Decimal("0"), ge=0)
    min_profit_percentage: Decimal = Field(default=Decimal("0.5"), ge=0)
    max_gas_price_gwei: Decimal = Field(default=Decimal("15"), gt=0)

    # Scheduling
    polling_interval: float = Field(default=60.0, gt=0)
    call_timeout: float = Field(default=5.0, gt=0)
    fetch_concurrency: int = Field(default=8, ge=1)
    execution_concurrency: int = Field(default=2, ge=1)
    submit_timeout: float = Field(default=30.0, gt=0)
    confirmation_timeout: float = Field(default=120.0, gt=0)

    # Execution
    trading_amount: Decimal = Field(default=Decimal("1000"), gt=0)
    trading_active: bool = True
    dry_run: bool = True

    # Telemetry
    degraded_after_cycles: int = Field(default=3, ge=1)
    history_size: int = Field(default=200, ge=1)

    # Chain access (from Settings)
    rpc_url: str = "https://mainnet.base.org"
    private_key: Optional[str] = None
    arbitrage_contract_address: Optional[str] = None
    require_connection: bool = False

    @model_validator(mode="after")
    def validate_universe(self) -> "EngineConfig":
        names = [v.name for v in self.venues]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate venue names: {names}")

        addresses = [t.address for t in self.tokens]
        if len(set(addresses)) != len(addresses):
            raise ValueError("Duplicate token addresses in universe")
        if self.quote_token.address in addresses:
            raise ValueError("Quote token cannot also be a traded token")

        if not self.dry_run:
            if not self.private_key:
                raise ValueError("PRIVATE_KEY is required when dry_run is disabled")
            if not self.arbitrage_contract_address:
                raise ValueError("ARBITRAGE_CONTRACT_ADDRESS is required when dry_run is disabled")
        if self.arbitrage_contract_address:
            self.arbitrage_contract_address = _check_address(self.arbitrage_contract_address)
        return self

    @property
    def min_profit_absolute_micro(self) -> int:
        return int(self.min_profit_absolute * PRICE_SCALE)

    @property
    def max_gas_price_wei(self) -> int:
        return int(self.max_gas_price_gwei * 10**9)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def find_config_path(filename: str = "config.yaml") -> str:
    """Locate config/<filename> relative to the project root (where pyproject.toml is)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").exists():
            return str(parent / "config" / filename)
    return f"config/{filename}"


def load_yaml_config(config_path: Optional[str] = None) -> dict[str, Any]:
    """
    Load YAML configuration file.

    Args:
        config_path: Path to config file. Defaults to config/config.yaml

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If the file is missing or not valid YAML
    """
    if config_path is None:
        config_path = os.getenv("ARBIE_CONFIG") or find_config_path()

    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(
            f"Config file not found: {config_path}",
            details={"path": str(config_path)},
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e


def build_engine_config(
    raw: dict[str, Any],
    settings: Optional[Settings] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> EngineConfig:
    """
    Merge the `arbitrage` YAML section with environment settings and validate.

    Precedence: overrides (CLI flags) > YAML > environment.

    Raises:
        ConfigurationError: On any missing or invalid setting
    """
    settings = settings or get_settings()
    section = dict(raw.get("arbitrage", raw))

    section.setdefault("rpc_url", settings.rpc_url)
    section.setdefault("private_key", settings.private_key)
    section.setdefault("arbitrage_contract_address", settings.arbitrage_contract_address)
    section.setdefault("dry_run", settings.dry_run)
    section.update(overrides or {})

    try:
        return EngineConfig.model_validate(section)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid arbitrage configuration: {'; '.join(problems)}",
            details={"errors": problems},
        ) from e


def load_engine_config(
    config_path: Optional[str] = None,
    settings: Optional[Settings] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> EngineConfig:
    """Load and validate the engine configuration (fails fast)."""
    settings = settings or get_settings()
    raw = load_yaml_config(config_path or settings.config_path)
    return build_engine_config(raw, settings, overrides)
