import os
import re
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv
from web3 import Web3

from src.keeper.types import ConfigurationInvalid

# Load Environment Variables from project root .env
env_path = os.path.join(os.path.dirname(__file__), "../.env")
load_dotenv(env_path)


class Settings:
    # ═══════════════════════════════════════════════════════════════════
    # DELTA KEEPER CONFIGURATION (Environment-Based)
    # Raw strings; parsed and validated once by KeeperConfig.from_settings()
    # ═══════════════════════════════════════════════════════════════════

    SILENT_MODE = os.getenv("SILENT_MODE", "false").lower() in ("1", "true", "yes")

    # --- Keeper Key ---
    KEEPER_PRIVATE_KEY = os.getenv("KEEPER_PRIVATE_KEY", "")

    # --- RPC Endpoints ---
    HYPEREVM_RPC = os.getenv("HYPEREVM_RPC", "https://rpc.hyperliquid-testnet.xyz/evm")
    ARBITRUM_RPC = os.getenv("ARBITRUM_RPC", "https://arb1.arbitrum.io/rpc")

    # --- Contract Addresses ---
    HYPEREVM_VAULT = os.getenv("HYPEREVM_VAULT", "")
    ARBITRUM_SPOT_VAULT = os.getenv("ARBITRUM_SPOT_VAULT", "")  # Optional
    ARBITRUM_COORDINATOR = os.getenv("ARBITRUM_COORDINATOR", "")  # Optional → monitoring-only

    # --- Strategy Parameters ---
    DELTA_THRESHOLD_BPS = os.getenv("DELTA_THRESHOLD_BPS", "500")
    MIN_FUNDING_RATE = os.getenv("MIN_FUNDING_RATE", "0.0001")
    SCAN_INTERVAL_MS = os.getenv("SCAN_INTERVAL_MS", "300000")  # 5 minutes
    TX_TIMEOUT_SEC = os.getenv("TX_TIMEOUT_SEC", "120")

    # --- Market Data ---
    HYPERLIQUID_API_URL = os.getenv("HYPERLIQUID_API_URL", "https://api.hyperliquid-testnet.xyz")
    MARKET_SYMBOL = os.getenv("MARKET_SYMBOL", "ETH")

    # --- Alerts (optional) ---
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "")

    # --- Admin Server ---
    ADMIN_PORT = os.getenv("ADMIN_PORT", "3000")

    @classmethod
    def validate(cls) -> "KeeperConfig":
        """Parse the raw values; raises ConfigurationInvalid listing every problem."""
        return KeeperConfig.from_settings(cls)


_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class KeeperConfig:
    """Typed, validated keeper configuration."""

    keeper_private_key: str
    hyperevm_rpc: str
    arbitrum_rpc: str
    hyperevm_vault: str
    arbitrum_spot_vault: Optional[str]
    arbitrum_coordinator: Optional[str]
    delta_threshold_bps: int = 500
    min_funding_rate: float = 0.0001
    scan_interval_ms: int = 300_000
    tx_timeout_sec: float = 120.0
    hyperliquid_api_url: str = "https://api.hyperliquid-testnet.xyz"
    market_symbol: str = "ETH"
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    admin_port: int = 3000

    @property
    def coordinator_configured(self) -> bool:
        return self.arbitrum_coordinator is not None

    @classmethod
    def from_settings(cls, settings=Settings) -> "KeeperConfig":
        """
        Parse and validate the raw settings.

        Raises:
            ConfigurationInvalid: listing every problem found
        """
        problems: List[str] = []

        key = settings.KEEPER_PRIVATE_KEY.strip()
        if not key:
            problems.append("KEEPER_PRIVATE_KEY is required")
        elif not _PRIVATE_KEY_RE.match(key):
            problems.append("KEEPER_PRIVATE_KEY must be 32 bytes of hex")

        vault = settings.HYPEREVM_VAULT.strip()
        if not vault:
            problems.append("HYPEREVM_VAULT is required")
        elif not Web3.is_address(vault):
            problems.append(f"HYPEREVM_VAULT is not a valid address: {vault}")

        optional = {}
        for name in ("ARBITRUM_SPOT_VAULT", "ARBITRUM_COORDINATOR"):
            value = getattr(settings, name).strip()
            if value and not Web3.is_address(value):
                problems.append(f"{name} is not a valid address: {value}")
            optional[name] = value or None

        def positive(name: str, parse):
            raw = getattr(settings, name)
            try:
                value = parse(raw)
            except (TypeError, ValueError):
                problems.append(f"{name} must be numeric, got {raw!r}")
                return None
            if value <= 0:
                problems.append(f"{name} must be positive, got {raw!r}")
                return None
            return value

        threshold = positive("DELTA_THRESHOLD_BPS", int)
        interval = positive("SCAN_INTERVAL_MS", int)
        tx_timeout = positive("TX_TIMEOUT_SEC", float)
        admin_port = positive("ADMIN_PORT", int)

        try:
            min_funding = float(settings.MIN_FUNDING_RATE)
        except (TypeError, ValueError):
            problems.append(f"MIN_FUNDING_RATE must be numeric, got {settings.MIN_FUNDING_RATE!r}")
            min_funding = None

        if problems:
            raise ConfigurationInvalid(problems)

        return cls(
            keeper_private_key=key,
            hyperevm_rpc=settings.HYPEREVM_RPC,
            arbitrum_rpc=settings.ARBITRUM_RPC,
            hyperevm_vault=vault,
            arbitrum_spot_vault=optional["ARBITRUM_SPOT_VAULT"],
            arbitrum_coordinator=optional["ARBITRUM_COORDINATOR"],
            delta_threshold_bps=threshold,
            min_funding_rate=min_funding,
            scan_interval_ms=interval,
            tx_timeout_sec=tx_timeout,
            hyperliquid_api_url=settings.HYPERLIQUID_API_URL,
            market_symbol=settings.MARKET_SYMBOL.upper(),
            telegram_bot_token=settings.TELEGRAM_BOT_TOKEN,
            telegram_chat_id=settings.TELEGRAM_CHAT_ID,
            admin_port=admin_port,
        )
