from __future__ import annotations

from typing import Optional, Sequence

from .config import VolumeConfig
from .indicators import calculate_volume_data
from .models import Candle, VolumeData, VolumeSpike
from .utils import percent_change


def spike_severity(ratio: float, config: VolumeConfig = VolumeConfig()) -> Optional[str]:
    if ratio >= config.extreme_threshold:
        return "EXTREME"
    if ratio >= config.high_threshold:
        return "HIGH"
    if ratio >= config.medium_threshold:
        return "MEDIUM"
    if ratio >= config.low_threshold:
        return "LOW"
    return None


def classify_volume_spike(
    volume_data: VolumeData,
    price: float,
    config: VolumeConfig = VolumeConfig(),
    *,
    price_change_percent: float = 0.0,
    timestamp: Optional[int] = None,
) -> Optional[VolumeSpike]:
    """Turn volume statistics into a spike alert when the ratio reaches the lowest bucket."""
    severity = spike_severity(volume_data.volume_ratio, config)
    if severity is None:
        return None
    return VolumeSpike(
        volume_ratio=volume_data.volume_ratio,
        current_volume=volume_data.current_volume,
        average_volume=volume_data.average_volume,
        severity=severity,
        price=price,
        price_change_percent=price_change_percent,
        volume_trend=volume_data.volume_trend,
        timestamp=timestamp,
    )


def detect_volume_spike(candles: Sequence[Candle], config: VolumeConfig = VolumeConfig()) -> Optional[VolumeSpike]:
    """Spike check on the latest candle, which may still be open."""
    volume_data = calculate_volume_data(candles, config.volume_period)
    if volume_data is None:
        return None
    current = candles[-1]
    return classify_volume_spike(
        volume_data,
        current.close,
        config,
        price_change_percent=percent_change(candles[-2].close, current.close),
        timestamp=current.open_time,
    )
