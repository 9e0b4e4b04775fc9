import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional
from dotenv import load_dotenv

load_dotenv()

# Optional YAML overrides (environment variables still win)
DEFAULT_CONFIG_PATH = Path(__file__).parent / "pair_alerts.yaml"

# Polling
DEFAULT_CHECK_INTERVAL = 20          # seconds between DexScreener checks
DEFAULT_CHAIN_ID = "solana"
DEFAULT_PAIR_SOURCE = "search"       # search | boosted
PAIR_SOURCES = ("search", "boosted")

# Filter policy
DEFAULT_MAX_TOKEN_AGE_SECONDS = 60   # only pairs created in the last minute
DEFAULT_MIN_LIQUIDITY_USD = 50
DEFAULT_MAX_TOKENS_PER_BATCH = 10    # 0 = no cap

# Telegram pacing (avoid 429 from Telegram)
DEFAULT_SEND_DELAY_SECONDS = 1.5

# Sent-token tracker
TRACKER_MODES = ("file", "memory")
DEFAULT_TRACKER_MODE = "file"
DEFAULT_TRACKER_FILE = "sent-tokens.json"
DEFAULT_RETENTION_SECONDS = {
    "file": 86400,   # 24h, survives restarts
    "memory": 600,   # 10 min, lost on restart
}
DEFAULT_TRACKER_CLEANUP_INTERVAL = 60


class ConfigError(Exception):
    """Invalid or missing configuration. Fatal at startup."""


@dataclass(frozen=True)
class BotConfig:
    telegram_bot_token: str
    telegram_chat_id: str
    check_interval: float = DEFAULT_CHECK_INTERVAL
    max_token_age_seconds: float = DEFAULT_MAX_TOKEN_AGE_SECONDS
    min_liquidity_usd: float = DEFAULT_MIN_LIQUIDITY_USD
    max_tokens_per_batch: int = DEFAULT_MAX_TOKENS_PER_BATCH
    send_delay_seconds: float = DEFAULT_SEND_DELAY_SECONDS
    tracker_mode: str = DEFAULT_TRACKER_MODE
    tracker_file: str = DEFAULT_TRACKER_FILE
    tracker_retention_seconds: float = DEFAULT_RETENTION_SECONDS[DEFAULT_TRACKER_MODE]
    tracker_cleanup_interval: float = DEFAULT_TRACKER_CLEANUP_INTERVAL
    chain_id: str = DEFAULT_CHAIN_ID
    pair_source: str = DEFAULT_PAIR_SOURCE
    dexscreener_query: Optional[str] = None
    debug_mode: bool = False

    def describe(self) -> str:
        """One-line summary for the startup log (no secrets)."""
        batch = self.max_tokens_per_batch or "unbounded"
        retention = f"{self.tracker_retention_seconds:g}s" if self.tracker_retention_seconds else "forever"
        return (
            f"Chain: {self.chain_id} ({self.pair_source}), "
            f"Max token age: {self.max_token_age_seconds:g}s, Max batch: {batch}, "
            f"Min liquidity: ${self.min_liquidity_usd:g}, "
            f"Tracker: {self.tracker_mode} (retention {retention}), Debug: {self.debug_mode}"
        )


def load_yaml_config(path) -> Dict:
    """Load YAML overrides. A missing file means no overrides."""
    path = Path(path)
    if not path.exists():
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def env_truthy(val) -> bool:
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_number(name: str, raw, cast, minimum=0):
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_config(env: Mapping[str, str] = None, config_path=None) -> BotConfig:
    """
    Build the bot configuration.

    Precedence: environment (incl. .env) > YAML file > defaults.

    Raises:
        ConfigError: missing Telegram credentials or invalid values
    """
    env = os.environ if env is None else env
    file_values = load_yaml_config(
        config_path or env.get("PAIR_ALERTS_CONFIG") or DEFAULT_CONFIG_PATH
    )

    def lookup(env_name: str, default=None):
        raw = env.get(env_name)
        if raw is not None and str(raw).strip() != "":
            return raw
        value = file_values.get(env_name.lower())
        return default if value is None else value

    telegram_bot_token = str(lookup("TELEGRAM_BOT_TOKEN", "")).strip()
    telegram_chat_id = str(lookup("TELEGRAM_CHAT_ID", "")).strip()

    if not telegram_bot_token:
        raise ConfigError("TELEGRAM_BOT_TOKEN environment variable is required")
    if not telegram_chat_id:
        raise ConfigError("TELEGRAM_CHAT_ID environment variable is required")

    # Age window: seconds wins, hours is the coarse alternative
    age_seconds = lookup("MAX_TOKEN_AGE_SECONDS")
    age_hours = lookup("MAX_TOKEN_AGE_HOURS")
    if age_seconds is not None:
        max_age = _parse_number("MAX_TOKEN_AGE_SECONDS", age_seconds, float)
    elif age_hours is not None:
        max_age = _parse_number("MAX_TOKEN_AGE_HOURS", age_hours, float) * 3600
    else:
        max_age = float(DEFAULT_MAX_TOKEN_AGE_SECONDS)

    tracker_mode = str(lookup("TRACKER_MODE", DEFAULT_TRACKER_MODE)).strip().lower()
    if tracker_mode not in TRACKER_MODES:
        raise ConfigError(f"TRACKER_MODE must be one of {TRACKER_MODES}, got {tracker_mode!r}")

    pair_source = str(lookup("PAIR_SOURCE", DEFAULT_PAIR_SOURCE)).strip().lower()
    if pair_source not in PAIR_SOURCES:
        raise ConfigError(f"PAIR_SOURCE must be one of {PAIR_SOURCES}, got {pair_source!r}")

    query = lookup("DEXSCREENER_QUERY")

    return BotConfig(
        telegram_bot_token=telegram_bot_token,
        telegram_chat_id=telegram_chat_id,
        check_interval=_parse_number(
            "CHECK_INTERVAL", lookup("CHECK_INTERVAL", DEFAULT_CHECK_INTERVAL), float, minimum=1),
        max_token_age_seconds=max_age,
        min_liquidity_usd=_parse_number(
            "MIN_LIQUIDITY_USD", lookup("MIN_LIQUIDITY_USD", DEFAULT_MIN_LIQUIDITY_USD), float),
        max_tokens_per_batch=_parse_number(
            "MAX_TOKENS_PER_BATCH", lookup("MAX_TOKENS_PER_BATCH", DEFAULT_MAX_TOKENS_PER_BATCH), int),
        send_delay_seconds=_parse_number(
            "SEND_DELAY_SECONDS", lookup("SEND_DELAY_SECONDS", DEFAULT_SEND_DELAY_SECONDS), float),
        tracker_mode=tracker_mode,
        tracker_file=str(lookup("TRACKER_FILE", DEFAULT_TRACKER_FILE)),
        tracker_retention_seconds=_parse_number(
            "TRACKER_RETENTION_SECONDS",
            lookup("TRACKER_RETENTION_SECONDS", DEFAULT_RETENTION_SECONDS[tracker_mode]), float),
        tracker_cleanup_interval=_parse_number(
            "TRACKER_CLEANUP_INTERVAL",
            lookup("TRACKER_CLEANUP_INTERVAL", DEFAULT_TRACKER_CLEANUP_INTERVAL), float, minimum=1),
        chain_id=str(lookup("CHAIN_ID", DEFAULT_CHAIN_ID)).strip().lower(),
        pair_source=pair_source,
        dexscreener_query=str(query) if query is not None else None,
        debug_mode=env_truthy(lookup("DEBUG_MODE", False)),
    )
