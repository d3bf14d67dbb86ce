"""
Delta Keeper Test Configuration
===============================
Shared fixtures and pytest markers for the test suite.
"""

import pytest
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ============================================================================
# PYTEST MARKERS
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: pure logic tests with no external I/O"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "network: marks tests that require network access"
    )
    config.addinivalue_line(
        "markers", "integration: marks integration tests"
    )


# ============================================================================
# SHARED FIXTURES
# ============================================================================

VALID_KEY = "0x" + "11" * 32
VAULT_ADDRESS = "0x" + "aa" * 20
COORDINATOR_ADDRESS = "0x" + "bb" * 20
SPOT_VAULT_ADDRESS = "0x" + "cc" * 20


@pytest.fixture
def mock_settings(monkeypatch):
    """Provide a complete, valid raw environment for isolated tests."""
    values = {
        "SILENT_MODE": True,
        "KEEPER_PRIVATE_KEY": VALID_KEY,
        "HYPEREVM_RPC": "http://hyperevm.test",
        "ARBITRUM_RPC": "http://arbitrum.test",
        "HYPEREVM_VAULT": VAULT_ADDRESS,
        "ARBITRUM_SPOT_VAULT": "",
        "ARBITRUM_COORDINATOR": COORDINATOR_ADDRESS,
        "DELTA_THRESHOLD_BPS": "500",
        "MIN_FUNDING_RATE": "0.0001",
        "SCAN_INTERVAL_MS": "300000",
        "TX_TIMEOUT_SEC": "120",
        "HYPERLIQUID_API_URL": "http://hyperliquid.test",
        "MARKET_SYMBOL": "eth",
        "TELEGRAM_BOT_TOKEN": "",
        "TELEGRAM_CHAT_ID": "",
        "ADMIN_PORT": "3000",
    }
    for name, value in values.items():
        monkeypatch.setattr(f"config.settings.Settings.{name}", value)

    from config.settings import Settings
    yield Settings


@pytest.fixture
def metrics_path(tmp_path):
    """Metrics JSONL file inside the test's tmp dir."""
    return str(tmp_path / "metrics.jsonl")
