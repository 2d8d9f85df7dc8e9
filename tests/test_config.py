"""
Tests for application settings.
"""

import pytest
from pydantic import ValidationError

from agentpay.config import Settings

from conftest import make_settings


class TestRpcUrls:
    """Tests for RPC endpoint ordering."""

    def test_primary_first_then_fallbacks(self):
        settings = make_settings(
            rpc_url="https://a.example/",
            rpc_fallback_urls="https://b.example, https://a.example,https://c.example/,",
        )
        assert settings.rpc_urls == ["https://a.example", "https://b.example", "https://c.example"]

    def test_default_fallbacks(self):
        settings = Settings(_env_file=None)
        assert settings.rpc_urls[0] == "https://sepolia.base.org"
        assert len(settings.rpc_urls) == 4


class TestNetwork:
    """Tests for network-derived values."""

    def test_base_sepolia(self):
        settings = make_settings()
        assert settings.chain_id == 84532
        assert settings.transaction_url("0xabc") == "https://sepolia.basescan.org/tx/0xabc"

    def test_base_mainnet(self):
        settings = make_settings(network="base")
        assert settings.chain_id == 8453
        assert settings.usdc_payment_asset == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

    def test_unknown_network(self):
        with pytest.raises(ValidationError):
            make_settings(network="goerli")


class TestTrading:
    """Tests for trading parameters."""

    def test_slippage_bps(self):
        assert make_settings().slippage_bps == 500
        assert make_settings(slippage_tolerance=0.01).slippage_bps == 100

    @pytest.mark.parametrize("value", [0.0, 0.0005, 0.6])
    def test_slippage_bounds(self, value):
        with pytest.raises(ValidationError):
            make_settings(slippage_tolerance=value)

    def test_supported_symbols(self):
        assert make_settings(supported_symbols="btc, wbtc").supported_symbols_list == ["BTC", "WBTC"]

    def test_btc_is_wbtc(self):
        settings = make_settings()
        assert settings.get_token("btc").address == settings.get_token("WBTC").address
        assert settings.get_token("BTC").decimals == 8
        assert settings.get_token("USDC").decimals == 6
        assert settings.get_token("DOGE") is None

    def test_zero_address_is_unconfigured(self):
        settings = make_settings(mock_wbtc_address="0x0000000000000000000000000000000000000000")
        assert settings.get_token("WBTC").is_configured is False


class TestStorage:
    """Tests for storage settings."""

    def test_async_driver(self):
        assert make_settings(database_url="postgresql://u:p@db/app").async_database_url == (
            "postgresql+asyncpg://u:p@db/app"
        )
        assert make_settings(database_url="sqlite:///./x.db").async_database_url == "sqlite+aiosqlite:///./x.db"

    def test_backend_is_normalized(self):
        assert make_settings(storage_backend="SQL").storage_backend == "sql"

    def test_invalid_backend(self):
        with pytest.raises(ValidationError):
            make_settings(storage_backend="redis")


class TestEnvironment:
    """Tests for loading from the environment."""

    def test_reads_environment_variables(self, monkeypatch):
        monkeypatch.setenv("NETWORK", "base")
        monkeypatch.setenv("CONSULTANCY_FEE", "0.25")
        monkeypatch.setenv("EXECUTION_PRIVATE_KEY", "0x" + "11" * 32)

        settings = Settings(_env_file=None)

        assert settings.network == "base"
        assert settings.consultancy_fee == 0.25
        assert settings.execution_private_key == "0x" + "11" * 32

    def test_cors_wildcard(self):
        assert make_settings(cors_allowed_origins="*").cors_origins_list == ["*"]
