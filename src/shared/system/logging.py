"""
Centralized Logger with Rich Console
====================================
Static facade used by every keeper component.

Usage:
    from src.shared.system.logging import Logger

    Logger.info("[MARKET] Snapshot fetched")
    Logger.success("[SYNC] Position synced")
    Logger.warning("[DELTA] Threshold breached", data={"ratio_bps": 612})
    Logger.error("[VAULT] Read failed")
    Logger.section("Keeper Cycle")

Console lines go through Rich; every record is also written to a daily
rotating file as ``[ts] [LEVEL] [CATEGORY] message | {json}``.
"""

import os
import json
import logging
from collections import deque
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.text import Text

LOG_DIR = os.getenv(
    "KEEPER_LOG_DIR",
    os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(__file__)))), "logs"),
)
os.makedirs(LOG_DIR, exist_ok=True)

_log_date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
log_file = os.path.join(LOG_DIR, f"keeper_{_log_date}.log")

handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s", datefmt="%Y-%m-%dT%H:%M:%S")
handler.setFormatter(formatter)

file_logger = logging.getLogger("DeltaKeeper")
file_logger.setLevel(logging.DEBUG)
file_logger.addHandler(handler)
file_logger.propagate = False


# =============================================================================
# SOURCE ICONS (for visual scanning)
# =============================================================================

SOURCE_ICONS = {
    "SYSTEM": "🛸",
    "KEEPER": "🤖",
    "MARKET": "📊",
    "VAULT": "🏦",
    "COORD": "🧭",
    "SPOT": "💧",
    "SYNC": "🔄",
    "DELTA": "⚖️",
    "FUNDING": "💸",
    "ADMIN": "🖥️",
    "ALERT": "📣",
    "CONFIG": "⚙️",
}

LEVEL_STYLES = {
    "INFO": "cyan",
    "SUCCESS": "green bold",
    "WARNING": "yellow",
    "ERROR": "red bold",
    "DEBUG": "dim",
    "CRITICAL": "red bold reverse",
    "SECTION": "magenta bold",
}

_console = Console()


# =============================================================================
# LOGGER CLASS
# =============================================================================

class Logger:
    """
    Centralized logger with Rich console output.

    - Color-coded console output
    - File logging with rotation
    - Source-based icon prefixes parsed from a leading ``[TAG]``
    - Optional structured payload appended as JSON
    """

    _silent_mode = False

    @staticmethod
    def _timestamp() -> str:
        """High-precision timestamp (HH:MM:SS.ms)."""
        now = datetime.now()
        ms = str(now.microsecond)[:3]
        return f"{now.strftime('%H:%M:%S')}.{ms:0<3}"

    @staticmethod
    def _parse_source(message: str) -> tuple:
        """Extract [SOURCE] tag from message if present."""
        stripped = message.strip()
        if stripped.startswith("[") and "]" in stripped:
            tag_end = stripped.index("]")
            source = stripped[1:tag_end].upper()
            if 0 < len(source) < 15:
                return source, stripped[tag_end + 1:].strip()
        return "SYSTEM", message

    @staticmethod
    def _with_data(message: str, data: Optional[Dict[str, Any]]) -> str:
        if not data:
            return message
        return f"{message} | {json.dumps(data, default=str, sort_keys=True)}"

    @staticmethod
    def _is_silent() -> bool:
        """Console suppressed by set_silent() or Settings.SILENT_MODE."""
        if Logger._silent_mode:
            return True

        from config.settings import Settings
        return bool(getattr(Settings, "SILENT_MODE", False))

    @staticmethod
    def _format_console(level: str, message: str, source: str) -> None:
        """Output to console with Rich formatting."""
        if Logger._is_silent():
            return

        ts = Logger._timestamp()
        icon = SOURCE_ICONS.get(source.upper(), "")
        msg_with_icon = f"{icon} {message}" if icon else message

        style = LEVEL_STYLES.get(level, "white")
        line = Text()
        line.append(f"{ts} ", style="dim")
        line.append(f"| {level[:8].ljust(8)} ", style=style)
        line.append(f"| {source[:10].ljust(10)} | ", style="dim")
        line.append(msg_with_icon)

        _console.print(line)

    @staticmethod
    def _log_to_file(level: str, message: str, source: str = "") -> None:
        """Write to file logger."""
        full_msg = f"[{source}] {message}" if source else message
        if level == "INFO":
            file_logger.info(full_msg)
        elif level == "WARNING":
            file_logger.warning(full_msg)
        elif level == "ERROR":
            file_logger.error(full_msg)
        elif level == "DEBUG":
            file_logger.debug(full_msg)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @staticmethod
    def info(message: str, data: Optional[Dict[str, Any]] = None) -> None:
        source, msg = Logger._parse_source(message)
        msg = Logger._with_data(msg, data)
        Logger._format_console("INFO", msg, source)
        Logger._log_to_file("INFO", msg, source)

    @staticmethod
    def success(message: str, data: Optional[Dict[str, Any]] = None) -> None:
        source, msg = Logger._parse_source(message)
        msg = Logger._with_data(msg, data)
        Logger._format_console("SUCCESS", msg, source)
        Logger._log_to_file("INFO", f"✅ {msg}", source)

    @staticmethod
    def warning(message: str, data: Optional[Dict[str, Any]] = None) -> None:
        source, msg = Logger._parse_source(message)
        msg = Logger._with_data(msg, data)
        Logger._format_console("WARNING", msg, source)
        Logger._log_to_file("WARNING", msg, source)

    @staticmethod
    def error(message: str, data: Optional[Dict[str, Any]] = None) -> None:
        source, msg = Logger._parse_source(message)
        msg = Logger._with_data(msg, data)
        Logger._format_console("ERROR", msg, source)
        Logger._log_to_file("ERROR", msg, source)

    @staticmethod
    def debug(message: str, data: Optional[Dict[str, Any]] = None) -> None:
        source, msg = Logger._parse_source(message)
        Logger._log_to_file("DEBUG", Logger._with_data(msg, data), source)

    @staticmethod
    def critical(message: str, data: Optional[Dict[str, Any]] = None) -> None:
        source, msg = Logger._parse_source(message)
        msg = Logger._with_data(msg, data)
        Logger._format_console("CRITICAL", f"🛑 {msg}", source)
        Logger._log_to_file("ERROR", f"🛑 {msg}", source)

    @staticmethod
    def section(title: str) -> None:
        """Print a section header."""
        if not Logger._is_silent():
            _console.print()
            _console.rule(f"[bold magenta]{title}[/]", style="dim")
        Logger._log_to_file("INFO", f"=== {title} ===", "SYSTEM")

    @staticmethod
    def set_silent(silent: bool) -> None:
        """Enable/disable console output."""
        Logger._silent_mode = silent

    @staticmethod
    def recent_lines(limit: int = 100) -> Optional[List[str]]:
        """Tail of the current log file, or None when nothing was written yet."""
        if not os.path.exists(log_file):
            return None
        with open(log_file, "r", encoding="utf-8") as f:
            return [line.rstrip("\n") for line in deque(f, maxlen=limit)]
