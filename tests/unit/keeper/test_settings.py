"""
Keeper Configuration Unit Tests
===============================
Validation of the raw environment into KeeperConfig.
"""

import pytest

from config.settings import KeeperConfig
from src.keeper.types import ConfigurationInvalid


@pytest.mark.unit
class TestKeeperConfig:

    def test_valid_environment(self, mock_settings):
        cfg = mock_settings.validate()

        assert isinstance(cfg, KeeperConfig)
        assert cfg.delta_threshold_bps == 500
        assert cfg.min_funding_rate == pytest.approx(0.0001)
        assert cfg.scan_interval_ms == 300_000
        assert cfg.tx_timeout_sec == pytest.approx(120.0)
        assert cfg.market_symbol == "ETH"
        assert cfg.coordinator_configured
        assert cfg.arbitrum_spot_vault is None

    def test_missing_coordinator_means_monitoring_only(self, mock_settings, monkeypatch):
        monkeypatch.setattr(mock_settings, "ARBITRUM_COORDINATOR", "")

        cfg = mock_settings.validate()

        assert not cfg.coordinator_configured

    def test_missing_required_values_listed_together(self, mock_settings, monkeypatch):
        monkeypatch.setattr(mock_settings, "KEEPER_PRIVATE_KEY", "")
        monkeypatch.setattr(mock_settings, "HYPEREVM_VAULT", "")

        with pytest.raises(ConfigurationInvalid) as exc:
            mock_settings.validate()

        problems = exc.value.problems
        assert "KEEPER_PRIVATE_KEY is required" in problems
        assert "HYPEREVM_VAULT is required" in problems

    @pytest.mark.parametrize("key", ["0x1234", "not-a-key", "0x" + "zz" * 32])
    def test_malformed_private_key(self, mock_settings, monkeypatch, key):
        monkeypatch.setattr(mock_settings, "KEEPER_PRIVATE_KEY", key)

        with pytest.raises(ConfigurationInvalid, match="KEEPER_PRIVATE_KEY"):
            mock_settings.validate()

    def test_private_key_without_prefix_is_accepted(self, mock_settings, monkeypatch):
        monkeypatch.setattr(mock_settings, "KEEPER_PRIVATE_KEY", "22" * 32)

        assert mock_settings.validate().keeper_private_key == "22" * 32

    def test_malformed_optional_address(self, mock_settings, monkeypatch):
        monkeypatch.setattr(mock_settings, "ARBITRUM_SPOT_VAULT", "0xnope")

        with pytest.raises(ConfigurationInvalid, match="ARBITRUM_SPOT_VAULT"):
            mock_settings.validate()

    @pytest.mark.parametrize(
        "name,value",
        [
            ("DELTA_THRESHOLD_BPS", "abc"),
            ("DELTA_THRESHOLD_BPS", "0"),
            ("SCAN_INTERVAL_MS", "-5"),
            ("TX_TIMEOUT_SEC", "soon"),
            ("MIN_FUNDING_RATE", "high"),
        ],
    )
    def test_bad_numeric_values(self, mock_settings, monkeypatch, name, value):
        monkeypatch.setattr(mock_settings, name, value)

        with pytest.raises(ConfigurationInvalid, match=name):
            mock_settings.validate()

    def test_negative_min_funding_rate_is_allowed(self, mock_settings, monkeypatch):
        monkeypatch.setattr(mock_settings, "MIN_FUNDING_RATE", "-0.0005")

        assert mock_settings.validate().min_funding_rate == pytest.approx(-0.0005)
