# Configurations for the signal engine
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Tuple

from dotenv import load_dotenv

from .errors import InvalidConfigurationError
from .utils import timeframe_to_ms

DB_PATH = "data/signalbot.db"  # sqlite file for tracker state, signals and logs
LOG_LEVEL = "INFO"  # overridable with the LOG_LEVEL environment variable
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
MAX_THREADS = 10  # pairs evaluated concurrently within one tick
RETRIES = 3  # number of retries for API requests
BACK_OFF_FACTOR = 2  # exponential backoff factor for retries in seconds
KLINE_LIMIT = 100  # candles fetched per pair/timeframe on each tick

DEFAULT_PAIRS = ("BTCUSDT", "ETHUSDT")
DEFAULT_TIMEFRAMES = ("5m", "15m")

# Configuration for Pivot Point Detection
PIVOT_LENGTH = 2  # bars compared on each side of a pivot candidate

# Configuration for tracker state
HISTORY_SIZE = 60  # closed candles retained per symbol/timeframe

# Cooldowns between two alerts of the same type, in milliseconds
RSI_DIVERGENCE_COOLDOWN_MS = 5 * 60 * 1000
MACD_DIVERGENCE_COOLDOWN_MS = 5 * 60 * 1000
STRUCTURE_COOLDOWN_MS = 10 * 60 * 1000
VOLUME_DIVERGENCE_COOLDOWN_MS = 3 * 60 * 1000
VOLUME_SPIKE_COOLDOWN_MS = 2 * 60 * 1000
SCALPING_COOLDOWN_MS = 5 * 60 * 1000

# Minimum move before a same-direction signal counts as new
DIVERGENCE_PRICE_CHANGE = 0.01
STRUCTURE_PRICE_CHANGE = 0.02
VOLUME_DIVERGENCE_CONFIDENCE_CHANGE = 20.0
VOLUME_SPIKE_RATIO_CHANGE = 0.5

# Configuration for signal tracking
SIGNAL_EXPIRY_HOURS = 24
MAX_ACTIVE_SIGNALS = 50


def _positive(name: str, value: float) -> None:
    if value is None or value <= 0:
        raise InvalidConfigurationError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class _Config:
    def with_updates(self, **changes):
        """Return a validated copy with ``changes`` applied."""
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def validate(self) -> None:
        pass


@dataclass(frozen=True)
class DivergenceConfig(_Config):
    """RSI divergence thresholds (pivot based)."""
    pivot_length: int = PIVOT_LENGTH
    rsi_period: int = 14
    bull_divergence_diff: float = 5.0
    bear_divergence_diff: float = 5.0
    bull_rsi_level: float = 45.0
    bear_rsi_level: float = 55.0
    tp_percent: float = 1.0
    sl_percent: float = 1.0
    min_candles: int = 30

    def validate(self) -> None:
        _positive("pivot_length", self.pivot_length)
        _positive("rsi_period", self.rsi_period)
        _positive("bull_divergence_diff", self.bull_divergence_diff)
        _positive("bear_divergence_diff", self.bear_divergence_diff)
        _positive("tp_percent", self.tp_percent)
        _positive("sl_percent", self.sl_percent)
        if not 0 < self.bull_rsi_level < 50:
            raise InvalidConfigurationError("bull_rsi_level must be within (0, 50)")
        if not 50 < self.bear_rsi_level < 100:
            raise InvalidConfigurationError("bear_rsi_level must be within (50, 100)")


@dataclass(frozen=True)
class MACDConfig(_Config):
    pivot_length: int = PIVOT_LENGTH
    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9
    tp_percent: float = 2.0
    sl_percent: float = 1.0
    min_candles: int = 50

    def validate(self) -> None:
        for name in ("pivot_length", "fast_period", "slow_period", "signal_period", "tp_percent", "sl_percent"):
            _positive(name, getattr(self, name))
        if self.fast_period >= self.slow_period:
            raise InvalidConfigurationError("fast_period must be shorter than slow_period")


@dataclass(frozen=True)
class StructureConfig(_Config):
    pivot_length: int = PIVOT_LENGTH
    tp_percent: float = 2.0
    sl_percent: float = 1.0
    min_candles: int = 20

    def validate(self) -> None:
        for name in ("pivot_length", "tp_percent", "sl_percent"):
            _positive(name, getattr(self, name))


@dataclass(frozen=True)
class VolumeConfig(_Config):
    volume_period: int = 20
    low_threshold: float = 1.5
    medium_threshold: float = 2.0
    high_threshold: float = 3.0
    extreme_threshold: float = 5.0
    divergence_lookback: int = 3

    def validate(self) -> None:
        _positive("volume_period", self.volume_period)
        _positive("divergence_lookback", self.divergence_lookback)
        thresholds = (self.low_threshold, self.medium_threshold, self.high_threshold, self.extreme_threshold)
        for value in thresholds:
            _positive("volume threshold", value)
        if list(thresholds) != sorted(thresholds):
            raise InvalidConfigurationError("volume thresholds must be ascending")


@dataclass(frozen=True)
class ScalpingConfig(_Config):
    ema_fast_period: int = 9
    ema_slow_period: int = 21
    stochastic_k_period: int = 14
    stochastic_d_period: int = 3
    stochastic_oversold: float = 20.0
    stochastic_overbought: float = 80.0
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    volume_period: int = 20
    volume_spike_threshold: float = 1.5
    min_confidence: float = 45.0  # lowest score of an in-zone stochastic cross
    alert_cooldown_ms: int = SCALPING_COOLDOWN_MS

    def validate(self) -> None:
        for name in (
            "ema_fast_period", "ema_slow_period", "stochastic_k_period", "stochastic_d_period",
            "bollinger_period", "bollinger_std_dev", "volume_period", "volume_spike_threshold",
        ):
            _positive(name, getattr(self, name))
        if not 0 <= self.min_confidence <= 100:
            raise InvalidConfigurationError("min_confidence must be between 0 and 100")
        if self.ema_fast_period >= self.ema_slow_period:
            raise InvalidConfigurationError("ema_fast_period must be shorter than ema_slow_period")
        if not 0 <= self.stochastic_oversold < self.stochastic_overbought <= 100:
            raise InvalidConfigurationError("stochastic zones must satisfy 0 <= oversold < overbought <= 100")
        if self.alert_cooldown_ms < 0:
            raise InvalidConfigurationError("alert_cooldown_ms must not be negative")


@dataclass(frozen=True)
class TPSLRule(_Config):
    """Base percentages and ATR multiplier for one signal type."""
    tp_percent: float
    sl_percent: float
    atr_multiplier: float
    adaptive: bool = False

    def validate(self) -> None:
        _positive("tp_percent", self.tp_percent)
        _positive("sl_percent", self.sl_percent)
        _positive("atr_multiplier", self.atr_multiplier)


@dataclass(frozen=True)
class TPSLConfig(_Config):
    rsi_divergence: TPSLRule = TPSLRule(2.5, 1.2, 1.5)
    macd_divergence: TPSLRule = TPSLRule(3.0, 1.5, 2.0)
    market_structure: TPSLRule = TPSLRule(2.0, 1.0, 1.0, adaptive=True)
    volume_spike: TPSLRule = TPSLRule(1.5, 0.8, 1.2, adaptive=True)
    volume_divergence: TPSLRule = TPSLRule(2.2, 1.1, 1.3, adaptive=True)
    atr_period: int = 14
    support_lookback: int = 20

    def validate(self) -> None:
        for rule in (self.rsi_divergence, self.macd_divergence, self.market_structure,
                     self.volume_spike, self.volume_divergence):
            rule.validate()
        _positive("atr_period", self.atr_period)
        _positive("support_lookback", self.support_lookback)


@dataclass(frozen=True)
class GatePolicy(_Config):
    """Cooldown plus change-significance filter for one signal type.

    A candidate with the same direction/sub type as the last emitted one only
    passes when one of the configured deltas is exceeded.
    """
    cooldown_ms: int
    price_change: float | None = None
    confidence_change: float | None = None
    ratio_change: float | None = None

    def validate(self) -> None:
        if self.cooldown_ms < 0:
            raise InvalidConfigurationError("cooldown_ms must not be negative")


@dataclass(frozen=True)
class CooldownConfig(_Config):
    rsi_divergence: GatePolicy = GatePolicy(RSI_DIVERGENCE_COOLDOWN_MS, price_change=DIVERGENCE_PRICE_CHANGE)
    macd_divergence: GatePolicy = GatePolicy(MACD_DIVERGENCE_COOLDOWN_MS, price_change=DIVERGENCE_PRICE_CHANGE)
    market_structure: GatePolicy = GatePolicy(STRUCTURE_COOLDOWN_MS, price_change=STRUCTURE_PRICE_CHANGE)
    volume_divergence: GatePolicy = GatePolicy(
        VOLUME_DIVERGENCE_COOLDOWN_MS, confidence_change=VOLUME_DIVERGENCE_CONFIDENCE_CHANGE
    )
    volume_spike: GatePolicy = GatePolicy(VOLUME_SPIKE_COOLDOWN_MS, ratio_change=VOLUME_SPIKE_RATIO_CHANGE)

    def policy_for(self, signal_type: str) -> GatePolicy:
        try:
            return getattr(self, signal_type.lower())
        except AttributeError:
            raise InvalidConfigurationError(f"No cooldown policy for {signal_type}") from None

    def validate(self) -> None:
        for policy in (self.rsi_divergence, self.macd_divergence, self.market_structure,
                       self.volume_divergence, self.volume_spike):
            policy.validate()


@dataclass(frozen=True)
class TrackingConfig(_Config):
    signal_expiry_hours: float = SIGNAL_EXPIRY_HOURS
    max_active_signals: int = MAX_ACTIVE_SIGNALS

    def validate(self) -> None:
        _positive("signal_expiry_hours", self.signal_expiry_hours)
        _positive("max_active_signals", self.max_active_signals)


@dataclass(frozen=True)
class EngineConfig(_Config):
    pairs: Tuple[str, ...] = DEFAULT_PAIRS
    timeframes: Tuple[str, ...] = DEFAULT_TIMEFRAMES
    history_size: int = HISTORY_SIZE
    max_threads: int = MAX_THREADS
    db_path: str = DB_PATH
    log_level: str = LOG_LEVEL
    divergence: DivergenceConfig = field(default_factory=DivergenceConfig)
    macd: MACDConfig = field(default_factory=MACDConfig)
    structure: StructureConfig = field(default_factory=StructureConfig)
    volume: VolumeConfig = field(default_factory=VolumeConfig)
    scalping: ScalpingConfig = field(default_factory=ScalpingConfig)
    tpsl: TPSLConfig = field(default_factory=TPSLConfig)
    cooldowns: CooldownConfig = field(default_factory=CooldownConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)

    @property
    def smallest_timeframe(self) -> str:
        return min(self.timeframes, key=timeframe_to_ms)

    def validate(self) -> None:
        if not self.pairs:
            raise InvalidConfigurationError("At least one trading pair is required")
        if not self.timeframes:
            raise InvalidConfigurationError("At least one timeframe is required")
        for timeframe in self.timeframes:
            timeframe_to_ms(timeframe)
        _positive("history_size", self.history_size)
        _positive("max_threads", self.max_threads)
        if self.log_level not in LOG_LEVELS:
            raise InvalidConfigurationError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")
        if self.history_size < max(self.divergence.min_candles, self.macd.min_candles, self.structure.min_candles):
            raise InvalidConfigurationError("history_size is smaller than the longest detector window")
        for section in (self.divergence, self.macd, self.structure, self.volume,
                        self.scalping, self.tpsl, self.cooldowns, self.tracking):
            section.validate()


def _split_env(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfigurationError(f"{name} must be numeric, got {raw!r}") from None


def load_settings() -> EngineConfig:
    """Build the engine configuration from defaults and the environment."""
    load_dotenv()

    scalping = ScalpingConfig(volume_spike_threshold=_float_env("VOLUME_SPIKE_THRESHOLD", 1.5))
    divergence = DivergenceConfig(rsi_period=int(_float_env("RSI_PERIOD", 14)))
    tracking = TrackingConfig(signal_expiry_hours=_float_env("SIGNAL_EXPIRY_HOURS", SIGNAL_EXPIRY_HOURS))

    settings = EngineConfig(
        pairs=_split_env("PAIRS", DEFAULT_PAIRS),
        timeframes=_split_env("TIMEFRAMES", DEFAULT_TIMEFRAMES),
        max_threads=int(_float_env("MAX_THREADS", MAX_THREADS)),
        db_path=os.getenv("DB_PATH") or DB_PATH,
        log_level=(os.getenv("LOG_LEVEL") or LOG_LEVEL).strip().upper(),
        divergence=divergence,
        scalping=scalping,
        tracking=tracking,
    )
    settings.validate()
    return settings
