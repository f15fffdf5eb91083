"""Tests for configuration loading and validation."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from arbie.core.config import (
    Settings,
    build_engine_config,
    find_config_path,
    load_yaml_config,
)
from arbie.core.errors import ConfigurationError

from conftest import engine_config_data


class TestSettings:
    """Tests for environment settings."""

    def test_log_level_validated(self):
        assert Settings(log_level="debug", _env_file=None).log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(log_level="chatty", _env_file=None)

    def test_defaults(self, monkeypatch):
        for var in ("RPC_URL", "DRY_RUN", "ARBIE_ENV"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings(_env_file=None)
        assert settings.rpc_url == "https://mainnet.base.org"
        assert settings.dry_run is True
        assert settings.is_local


class TestEngineConfig:
    """Tests for build_engine_config()."""

    def test_defaults(self, mock_settings):
        data = engine_config_data()
        for key in ("polling_interval", "call_timeout", "submit_timeout", "confirmation_timeout"):
            data.pop(key)

        config = build_engine_config({"arbitrage": data}, mock_settings)

        assert config.min_profit_percentage == Decimal("0.5")
        assert config.max_gas_price_gwei == Decimal("15")
        assert config.max_gas_price_wei == 15 * 10**9
        assert config.polling_interval == 60
        assert config.trading_amount == Decimal("1000")
        assert config.dry_run is True
        assert config.rpc_url == "https://mainnet.base.org"

    def test_addresses_checksummed(self, mock_settings):
        config = build_engine_config({"arbitrage": engine_config_data()}, mock_settings)
        assert config.quote_token.address == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

    def test_needs_two_venues(self, mock_settings):
        data = engine_config_data(venues=[{"name": "uniswap", "kind": "fake"}])
        with pytest.raises(ConfigurationError) as exc_info:
            build_engine_config({"arbitrage": data}, mock_settings)
        assert exc_info.value.code == "CONFIG_ERROR"
        assert exc_info.value.details["errors"]

    def test_duplicate_venue_names(self, mock_settings):
        data = engine_config_data(venues=[
            {"name": "uniswap", "kind": "fake"},
            {"name": "uniswap", "kind": "fake"},
        ])
        with pytest.raises(ConfigurationError):
            build_engine_config({"arbitrage": data}, mock_settings)

    def test_bad_token_address(self, mock_settings):
        data = engine_config_data(tokens=[{"address": "0x1234", "symbol": "BAD", "decimals": 18}])
        with pytest.raises(ConfigurationError):
            build_engine_config({"arbitrage": data}, mock_settings)

    def test_quote_token_cannot_be_traded(self, mock_settings):
        data = engine_config_data()
        data["tokens"].append(dict(data["quote_token"]))
        with pytest.raises(ConfigurationError):
            build_engine_config({"arbitrage": data}, mock_settings)

    def test_negative_threshold(self, mock_settings):
        data = engine_config_data(min_profit_percentage=-1)
        with pytest.raises(ConfigurationError):
            build_engine_config({"arbitrage": data}, mock_settings)

    def test_live_mode_requires_key_and_contract(self, mock_settings):
        mock_settings.dry_run = False
        with pytest.raises(ConfigurationError) as exc_info:
            build_engine_config({"arbitrage": engine_config_data()}, mock_settings)
        assert "PRIVATE_KEY" in exc_info.value.message

    def test_secrets_come_from_settings(self, mock_settings):
        mock_settings.dry_run = False
        mock_settings.private_key = "0x" + "11" * 32
        mock_settings.arbitrage_contract_address = "0x" + "ab" * 20

        config = build_engine_config({"arbitrage": engine_config_data()}, mock_settings)

        assert config.dry_run is False
        assert config.private_key == "0x" + "11" * 32
        assert config.arbitrage_contract_address.lower() == "0x" + "ab" * 20


class TestYamlConfig:
    """Tests for the YAML loader and the shipped config."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_yaml_config(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("arbitrage: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_yaml_config(str(path))

    def test_shipped_config_is_valid(self, mock_settings):
        config = build_engine_config(load_yaml_config(find_config_path()), mock_settings)

        assert config.quote_token.symbol == "USDC"
        assert {t.symbol for t in config.tokens} == {"ETH", "BASE"}
        assert [v.name for v in config.venues] == ["uniswap", "sushiswap", "alienbase", "aerodrome"]
        assert config.min_profit_percentage == Decimal("0.5")
        assert config.max_gas_price_gwei == Decimal("15")
        assert config.polling_interval == 60
        assert all("router" in v.addresses for v in config.venues)
