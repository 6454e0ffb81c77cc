"""
Load configuration from config.yaml and .env. API keys only from env.

Config doubles as the runtime key -> value store: components keep a reference and
read attributes on every evaluation, so values changed through update() apply
from the next tick on.
"""

from __future__ import annotations
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger("signal_engine.config")


# Documented runtime keys -> attribute names
RUNTIME_KEYS: Dict[str, str] = {
    "DEFAULT_USDT_AMOUNT": "default_usdt_amount",
    "DEFAULT_TP_PERCENT": "default_tp_percent",
    "DEFAULT_SL_PERCENT": "default_sl_percent",
    "ENTRY_DISTANCE_PERCENT": "entry_distance_percent",
    "MAX_ACTIVE_TRADES": "max_active_trades",
    "MAX_TRADES_PER_COIN": "max_trades_per_coin",
    "DAILY_LOSS_CAP_PERCENT": "daily_loss_cap_percent",
    "ADX_THRESHOLD": "adx_threshold",
    "RVOL_THRESHOLD": "rvol_threshold",
    "BB_WIDTH_THRESHOLD": "bb_width_threshold",
    "AI_ENABLED": "ai_enabled",
    "TRAILING_STOP_ENABLED": "trailing_stop_enabled",
    "TRAILING_STOP_DISTANCE": "trailing_stop_distance",
    "PARTIAL_TP_ENABLED": "partial_tp_enabled",
    "PARTIAL_TP_PERCENT": "partial_tp_percent",
    "DCA_ENABLED": "dca_enabled",
    "DCA_MAX_STEPS": "dca_max_steps",
    "DCA_DISTANCE_PERCENT": "dca_distance_percent",
    "AUTO_CLOSE_TIMEOUT_HOURS": "auto_close_timeout_hours",
    "ORDER_TIMEOUT_MINUTES": "order_timeout_minutes",
    "EMA_TOLERANCE_PERCENT": "ema_tolerance_percent",
    "NOTIFY_REJECTIONS": "notify_rejections",
}

DEFAULT_TREND_COMPATIBILITY: Dict[str, List[str]] = {
    "BULLISH": ["BUY", "SELL"],
    "BEARISH": ["BUY", "SELL"],
    "MIXED_BULLISH": ["BUY", "SELL"],
    "MIXED_BEARISH": ["BUY", "SELL"],
    "NEUTRAL": [],
}


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> "Config":
    """Load config.yaml and overlay with env. Returns Config."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    # Env overrides (for secrets and overrides)
    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    api = data.get("api", {})
    trading = data.get("trading", {})
    risk = data.get("risk", {})
    filters = data.get("filters", {})
    ai = data.get("ai", {})
    advanced = data.get("advanced", {})
    simulation = data.get("simulation", {})
    telegram = data.get("telegram", {})
    logging_cfg = data.get("logging", {})
    backtest = data.get("backtest", {})

    use_testnet = env_bool("USE_TESTNET", api.get("use_testnet", True))
    if use_testnet:
        binance_api_key = env("BINANCE_TESTNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_TESTNET_API_SECRET") or env("BINANCE_API_SECRET")
    else:
        binance_api_key = env("BINANCE_MAINNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_MAINNET_API_SECRET") or env("BINANCE_API_SECRET")

    reference_symbols = env("REFERENCE_SYMBOLS") or ",".join(filters.get("reference_symbols", ["BTCUSDT", "ETHUSDT"]))

    return Config(
        binance_api_key=binance_api_key,
        binance_api_secret=binance_api_secret,
        use_testnet=use_testnet,
        # Trading
        default_usdt_amount=env_float("DEFAULT_USDT_AMOUNT", trading.get("default_usdt_amount", 10.0)),
        default_tp_percent=env_float("DEFAULT_TP_PERCENT", trading.get("default_tp_percent", 0.5)),
        default_sl_percent=env_float("DEFAULT_SL_PERCENT", trading.get("default_sl_percent", 0.3)),
        entry_distance_percent=env_float("ENTRY_DISTANCE_PERCENT", trading.get("entry_distance_percent", 0.0)),
        order_timeout_minutes=env_float("ORDER_TIMEOUT_MINUTES", trading.get("order_timeout_minutes", 5.0)),
        # Risk
        max_active_trades=env_int("MAX_ACTIVE_TRADES", risk.get("max_active_trades", 5)),
        max_trades_per_coin=env_int("MAX_TRADES_PER_COIN", risk.get("max_trades_per_coin", 2)),
        daily_loss_cap_percent=env_float("DAILY_LOSS_CAP_PERCENT", risk.get("daily_loss_cap_percent", 5.0)),
        # Filters
        reference_symbols=[s.strip().upper() for s in reference_symbols.split(",") if s.strip()],
        global_timeframe=env("GLOBAL_TIMEFRAME", filters.get("global_timeframe", "1h")),
        trend_compatibility=filters.get("trend_compatibility", DEFAULT_TREND_COMPATIBILITY),
        local_bars_limit=env_int("LOCAL_BARS_LIMIT", filters.get("local_bars_limit", 250)),
        ema_tolerance_percent=env_float("EMA_TOLERANCE_PERCENT", filters.get("ema_tolerance_percent", 2.0)),
        adx_threshold=env_float("ADX_THRESHOLD", filters.get("adx_threshold", 20.0)),
        rvol_threshold=env_float("RVOL_THRESHOLD", filters.get("rvol_threshold", 1.2)),
        bb_width_threshold=env_float("BB_WIDTH_THRESHOLD", filters.get("bb_width_threshold", 0.01)),
        # AI
        ai_enabled=env_bool("AI_ENABLED", ai.get("enabled", False)),
        openai_api_key=env("OPENAI_API_KEY"),
        ai_model=env("AI_MODEL", ai.get("model", "gpt-4o-mini")),
        ai_base_url=env("AI_BASE_URL", ai.get("base_url", "https://api.openai.com/v1")),
        ai_timeout_seconds=env_float("AI_TIMEOUT_SECONDS", ai.get("timeout_seconds", 10.0)),
        # Position management
        trailing_stop_enabled=env_bool("TRAILING_STOP_ENABLED", advanced.get("trailing_stop_enabled", False)),
        trailing_stop_distance=env_float("TRAILING_STOP_DISTANCE", advanced.get("trailing_stop_distance", 0.2)),
        partial_tp_enabled=env_bool("PARTIAL_TP_ENABLED", advanced.get("partial_tp_enabled", False)),
        partial_tp_percent=env_float("PARTIAL_TP_PERCENT", advanced.get("partial_tp_percent", 50.0)),
        dca_enabled=env_bool("DCA_ENABLED", advanced.get("dca_enabled", False)),
        dca_max_steps=env_int("DCA_MAX_STEPS", advanced.get("dca_max_steps", 2)),
        dca_distance_percent=env_float("DCA_DISTANCE_PERCENT", advanced.get("dca_distance_percent", 3.0)),
        auto_close_timeout_hours=env_float("AUTO_CLOSE_TIMEOUT_HOURS", advanced.get("auto_close_timeout_hours", 0.0)),
        # Simulation / paper trading
        simulation_mode=env_bool("SIMULATION_MODE", simulation.get("enabled", False)),
        simulation_initial_balance=float(simulation.get("initial_balance", 1000.0)),
        simulation_state_file=Path(simulation.get("state_file", "logs/simulation_history.json")),
        # Telegram
        telegram_bot_token=env("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=env("TELEGRAM_CHAT_ID", str(telegram.get("chat_id", ""))),
        notify_rejections=env_bool("NOTIFY_REJECTIONS", telegram.get("notify_rejections", False)),
        # Logging
        log_level=logging_cfg.get("level", "INFO"),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "signal_engine.log"),
        trade_log_file=logging_cfg.get("trade_log_file", "trades.log"),
        # Backtest
        backtest_symbol=backtest.get("symbol", "ETHUSDT"),
        backtest_timeframe=backtest.get("timeframe", "15m"),
        backtest_start=backtest.get("start_date"),
        backtest_end=backtest.get("end_date"),
        backtest_initial_balance=float(backtest.get("initial_balance", 1000.0)),
        backtest_results_file=Path(backtest.get("results_file", "logs/backtest_results.json")),
    )


class Config:
    """Unified configuration. Trading keys are mutable at runtime through update()."""

    __slots__ = (
        "binance_api_key", "binance_api_secret", "use_testnet",
        "default_usdt_amount", "default_tp_percent", "default_sl_percent",
        "entry_distance_percent", "order_timeout_minutes",
        "max_active_trades", "max_trades_per_coin", "daily_loss_cap_percent",
        "reference_symbols", "global_timeframe", "trend_compatibility", "local_bars_limit",
        "ema_tolerance_percent", "adx_threshold", "rvol_threshold", "bb_width_threshold",
        "ai_enabled", "openai_api_key", "ai_model", "ai_base_url", "ai_timeout_seconds",
        "trailing_stop_enabled", "trailing_stop_distance", "partial_tp_enabled", "partial_tp_percent",
        "dca_enabled", "dca_max_steps", "dca_distance_percent", "auto_close_timeout_hours",
        "simulation_mode", "simulation_initial_balance", "simulation_state_file",
        "telegram_bot_token", "telegram_chat_id", "notify_rejections",
        "log_level", "log_dir", "log_file", "trade_log_file",
        "backtest_symbol", "backtest_timeframe", "backtest_start", "backtest_end",
        "backtest_initial_balance", "backtest_results_file",
        "_lock",
    )

    def __init__(
        self,
        binance_api_key: str = "",
        binance_api_secret: str = "",
        use_testnet: bool = True,
        default_usdt_amount: float = 10.0,
        default_tp_percent: float = 0.5,
        default_sl_percent: float = 0.3,
        entry_distance_percent: float = 0.0,
        order_timeout_minutes: float = 5.0,
        max_active_trades: int = 5,
        max_trades_per_coin: int = 2,
        daily_loss_cap_percent: float = 5.0,
        reference_symbols: Optional[List[str]] = None,
        global_timeframe: str = "1h",
        trend_compatibility: Optional[Dict[str, List[str]]] = None,
        local_bars_limit: int = 250,
        ema_tolerance_percent: float = 2.0,
        adx_threshold: float = 20.0,
        rvol_threshold: float = 1.2,
        bb_width_threshold: float = 0.01,
        ai_enabled: bool = False,
        openai_api_key: str = "",
        ai_model: str = "gpt-4o-mini",
        ai_base_url: str = "https://api.openai.com/v1",
        ai_timeout_seconds: float = 10.0,
        trailing_stop_enabled: bool = False,
        trailing_stop_distance: float = 0.2,
        partial_tp_enabled: bool = False,
        partial_tp_percent: float = 50.0,
        dca_enabled: bool = False,
        dca_max_steps: int = 2,
        dca_distance_percent: float = 3.0,
        auto_close_timeout_hours: float = 0.0,
        simulation_mode: bool = False,
        simulation_initial_balance: float = 1000.0,
        simulation_state_file: Path = None,
        telegram_bot_token: str = "",
        telegram_chat_id: str = "",
        notify_rejections: bool = False,
        log_level: str = "INFO",
        log_dir: Path = None,
        log_file: str = "signal_engine.log",
        trade_log_file: str = "trades.log",
        backtest_symbol: str = "ETHUSDT",
        backtest_timeframe: str = "15m",
        backtest_start: Optional[str] = None,
        backtest_end: Optional[str] = None,
        backtest_initial_balance: float = 1000.0,
        backtest_results_file: Path = None,
    ):
        self._lock = threading.Lock()
        self.binance_api_key = binance_api_key
        self.binance_api_secret = binance_api_secret
        self.use_testnet = use_testnet
        self.default_usdt_amount = default_usdt_amount
        self.default_tp_percent = default_tp_percent
        self.default_sl_percent = default_sl_percent
        self.entry_distance_percent = entry_distance_percent
        self.order_timeout_minutes = order_timeout_minutes
        self.max_active_trades = max_active_trades
        self.max_trades_per_coin = max_trades_per_coin
        self.daily_loss_cap_percent = daily_loss_cap_percent
        self.reference_symbols = list(reference_symbols or ["BTCUSDT", "ETHUSDT"])
        self.global_timeframe = global_timeframe
        self.trend_compatibility = dict(trend_compatibility or DEFAULT_TREND_COMPATIBILITY)
        self.local_bars_limit = local_bars_limit
        self.ema_tolerance_percent = ema_tolerance_percent
        self.adx_threshold = adx_threshold
        self.rvol_threshold = rvol_threshold
        self.bb_width_threshold = bb_width_threshold
        self.ai_enabled = ai_enabled
        self.openai_api_key = openai_api_key
        self.ai_model = ai_model
        self.ai_base_url = ai_base_url
        self.ai_timeout_seconds = ai_timeout_seconds
        self.trailing_stop_enabled = trailing_stop_enabled
        self.trailing_stop_distance = trailing_stop_distance
        self.partial_tp_enabled = partial_tp_enabled
        self.partial_tp_percent = partial_tp_percent
        self.dca_enabled = dca_enabled
        self.dca_max_steps = dca_max_steps
        self.dca_distance_percent = dca_distance_percent
        self.auto_close_timeout_hours = auto_close_timeout_hours
        self.simulation_mode = simulation_mode
        self.simulation_initial_balance = simulation_initial_balance
        self.simulation_state_file = Path(simulation_state_file) if simulation_state_file else Path("logs/simulation_history.json")
        self.telegram_bot_token = telegram_bot_token
        self.telegram_chat_id = telegram_chat_id
        self.notify_rejections = notify_rejections
        self.log_level = log_level
        self.log_dir = Path(log_dir) if log_dir else Path("logs")
        self.log_file = log_file
        self.trade_log_file = trade_log_file
        self.backtest_symbol = backtest_symbol
        self.backtest_timeframe = backtest_timeframe
        self.backtest_start = backtest_start
        self.backtest_end = backtest_end
        self.backtest_initial_balance = backtest_initial_balance
        self.backtest_results_file = Path(backtest_results_file) if backtest_results_file else Path("logs/backtest_results.json")

    def get(self, key: str) -> Any:
        """Read a documented runtime key, e.g. get("MAX_ACTIVE_TRADES")."""
        try:
            return getattr(self, RUNTIME_KEYS[key])
        except KeyError:
            raise KeyError(f"Unknown config key: {key}") from None

    def update(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply runtime changes. Unknown keys and values that do not convert to the
        key's type are skipped with a warning; the rest are applied together.
        Returns applied keys.
        """
        converted: Dict[str, Any] = {}
        for key, value in updates.items():
            attr = RUNTIME_KEYS.get(key)
            if attr is None:
                logger.warning("Rejected unknown config key: %s", key)
                continue
            try:
                converted[key] = self._coerce(getattr(self, attr), value)
            except (TypeError, ValueError):
                logger.warning("Rejected invalid value for %s: %r", key, value)
        with self._lock:
            for key, value in converted.items():
                setattr(self, RUNTIME_KEYS[key], value)
                logger.info("Config updated: %s = %s", key, value)
        return converted

    @staticmethod
    def _coerce(current: Any, value: Any) -> Any:
        if isinstance(current, bool):
            return value if isinstance(value, bool) else str(value).lower() in ("true", "1", "yes")
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        return value

    def runtime_values(self) -> Dict[str, Any]:
        """Snapshot of all documented runtime keys."""
        return {key: getattr(self, attr) for key, attr in RUNTIME_KEYS.items()}
