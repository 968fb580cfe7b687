"""Project data models for candles, pivots, signals and tracked trades."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Literal, Optional, Tuple

Direction = Literal["BULLISH", "BEARISH"]
Action = Literal["BUY", "SELL"]
PivotKind = Literal["HIGH", "LOW"]
Status = Literal["ACTIVE", "TP_HIT", "SL_HIT", "EXPIRED"]

RSI_DIVERGENCE = "RSI_DIVERGENCE"
MACD_DIVERGENCE = "MACD_DIVERGENCE"
MARKET_STRUCTURE = "MARKET_STRUCTURE"
VOLUME_DIVERGENCE = "VOLUME_DIVERGENCE"
VOLUME_SPIKE = "VOLUME_SPIKE"
SCALPING = "SCALPING"

SIGNAL_TYPES = (RSI_DIVERGENCE, MACD_DIVERGENCE, MARKET_STRUCTURE, VOLUME_DIVERGENCE, VOLUME_SPIKE, SCALPING)
TERMINAL_STATUSES = ("TP_HIT", "SL_HIT", "EXPIRED")


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Times are epoch milliseconds."""
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3

    def is_closed(self, now_ms: int) -> bool:
        return self.close_time < now_ms

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candle":
        return cls(
            open_time=int(data["open_time"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data["volume"]),
            close_time=int(data["close_time"]),
        )


@dataclass(frozen=True)
class PivotPoint:
    """A pivot/fractal point in a numeric series.

    Attributes:
        value: series value at the pivot
        index: position of the pivot within the analysed series
        kind: 'HIGH' | 'LOW'
        timestamp: open time of the matching candle, when known
    """
    value: float
    index: int
    kind: PivotKind
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class StructurePoint:
    """Swing high (from candle highs) or swing low (from candle lows)."""
    price: float
    index: int
    kind: PivotKind
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class DivergenceSignal:
    """Pivot based divergence between price and an oscillator (RSI or MACD)."""
    indicator: str
    direction: Direction
    reference_price: float
    reference_indicator_value: float
    previous_price: float
    previous_indicator_value: float
    confidence: float
    take_profit: float
    stop_loss: float
    timestamp: Optional[int] = None
    index: Optional[int] = None

    @property
    def signal_type(self) -> str:
        return MACD_DIVERGENCE if self.indicator == "MACD" else RSI_DIVERGENCE


@dataclass(frozen=True)
class VolumeDivergenceSignal:
    direction: Direction
    price_trend: str
    volume_trend: str
    price_change: float
    volume_change: float
    reversal_probability: str
    confidence: float
    price: float
    take_profit: float
    stop_loss: float
    timestamp: Optional[int] = None

    signal_type = VOLUME_DIVERGENCE


@dataclass(frozen=True)
class StructureSignal:
    """Market structure classification of the latest four swing points."""
    direction: Direction
    structure_type: Literal["HH", "HL", "LH", "LL"]
    kind: Literal["BREAK", "CONTINUATION"]
    price: float
    level: float
    previous_level: float
    change_percent: float
    confidence: float
    trend: str
    priority: str
    take_profit: float
    stop_loss: float
    pattern: Optional[str] = None
    timestamp: Optional[int] = None

    signal_type = MARKET_STRUCTURE


@dataclass(frozen=True)
class VolumeData:
    current_volume: float
    average_volume: float
    volume_ratio: float
    volume_trend: str
    vwap: Optional[float]
    price_above_vwap: bool
    profile: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class VolumeSpike:
    """Current candle volume against the trailing average."""
    volume_ratio: float
    current_volume: float
    average_volume: float
    severity: Literal["LOW", "MEDIUM", "HIGH", "EXTREME"]
    price: float
    price_change_percent: float
    volume_trend: str = "STABLE"
    timestamp: Optional[int] = None

    signal_type = VOLUME_SPIKE
    direction = "BULLISH"


@dataclass(frozen=True)
class ScalpingSignal:
    kind: Literal["EMA_CROSS", "STOCHASTIC", "BOLLINGER", "VOLUME_SPIKE"]
    action: Action
    price: float
    confidence: float
    reason: str
    details: Dict[str, float] = field(default_factory=dict)
    timestamp: Optional[int] = None

    signal_type = SCALPING

    @property
    def direction(self) -> Direction:
        return "BULLISH" if self.action == "BUY" else "BEARISH"


@dataclass(frozen=True)
class TPSLResult:
    """Take profit / stop loss levels for one hypothetical trade."""
    signal_type: str
    direction: Direction
    entry_price: float
    take_profit: float
    stop_loss: float
    tp_percent: float
    sl_percent: float
    risk_reward_ratio: float
    atr: float
    confidence: float
    risk_level: str
    method: str
    warnings: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.warnings


@dataclass(frozen=True)
class Alert:
    """Payload handed to the notification sink."""
    kind: str
    symbol: str
    timeframe: str
    signal: Any
    timestamp: int
    tpsl: Optional[TPSLResult] = None
    record_id: Optional[str] = None


@dataclass(frozen=True)
class SignalRecord:
    """A tracked signal. Replaced exactly once when it leaves ACTIVE."""
    id: str
    symbol: str
    timeframe: str
    signal_type: str
    sub_type: str
    direction: Direction
    entry_price: float
    take_profit: float
    stop_loss: float
    entry_time: int
    confidence: float
    risk_reward_ratio: float
    status: Status = "ACTIVE"
    exit_price: Optional[float] = None
    exit_time: Optional[int] = None
    pnl: Optional[float] = None
    pnl_percent: Optional[float] = None
    duration_minutes: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"

    def close(self, status: Status, exit_price: float, exit_time: int) -> "SignalRecord":
        if self.status != "ACTIVE":
            raise ValueError(f"Signal {self.id} is already {self.status}")
        if self.direction == "BULLISH":
            pnl = exit_price - self.entry_price
        else:
            pnl = self.entry_price - exit_price
        pnl_percent = pnl / self.entry_price * 100 if self.entry_price else 0.0
        return replace(
            self,
            status=status,
            exit_price=exit_price,
            exit_time=exit_time,
            pnl=pnl,
            pnl_percent=pnl_percent,
            duration_minutes=round((exit_time - self.entry_time) / 60000),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignalRecord":
        return cls(**data)


@dataclass(frozen=True)
class GateMark:
    """Last emitted alert of one signal type for one symbol/timeframe."""
    timestamp: int
    direction: str
    sub_type: str = ""
    price: float = 0.0
    confidence: float = 0.0
    ratio: float = 0.0


@dataclass(frozen=True)
class TrackerState:
    """Per symbol/timeframe state: closed candle history and alert gates."""
    candles: Tuple[Candle, ...] = ()
    last_alert_ms: Optional[int] = None
    gates: Dict[str, GateMark] = field(default_factory=dict)

    @property
    def last_open_time(self) -> Optional[int]:
        return self.candles[-1].open_time if self.candles else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candles": [candle.to_dict() for candle in self.candles],
            "last_alert_ms": self.last_alert_ms,
            "gates": {name: asdict(mark) for name, mark in self.gates.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackerState":
        return cls(
            candles=tuple(Candle.from_dict(item) for item in data.get("candles", [])),
            last_alert_ms=data.get("last_alert_ms"),
            gates={name: GateMark(**mark) for name, mark in data.get("gates", {}).items()},
        )
