import unittest

from factories import make_candles
from signalbot.config import VolumeConfig
from signalbot.indicators import calculate_volume_data
from signalbot.volume import classify_volume_spike, detect_volume_spike, spike_severity


def spike_candles(current_volume, closes=None):
    closes = closes or [100.0] * 21
    return make_candles(closes, volumes=[100.0] * 20 + [current_volume])


class TestVolumeSpike(unittest.TestCase):
    def test_ratio_above_threshold_triggers(self):
        spike = detect_volume_spike(spike_candles(160.0), VolumeConfig())
        self.assertIsNotNone(spike)
        self.assertAlmostEqual(spike.volume_ratio, 1.6)
        self.assertAlmostEqual(spike.average_volume, 100.0)
        self.assertEqual(spike.severity, "LOW")
        self.assertEqual(spike.direction, "BULLISH")

    def test_ratio_below_threshold_is_ignored(self):
        self.assertIsNone(detect_volume_spike(spike_candles(140.0), VolumeConfig()))

    def test_price_change_is_measured_against_previous_close(self):
        closes = [100.0] * 20 + [102.0]
        spike = detect_volume_spike(spike_candles(600.0, closes), VolumeConfig())
        self.assertEqual(spike.severity, "EXTREME")
        self.assertAlmostEqual(spike.price_change_percent, 2.0)
        self.assertEqual(spike.price, 102.0)

    def test_insufficient_history(self):
        self.assertIsNone(detect_volume_spike(make_candles([100.0] * 20), VolumeConfig()))

    def test_severity_buckets(self):
        config = VolumeConfig()
        self.assertIsNone(spike_severity(1.49, config))
        self.assertEqual(spike_severity(1.5, config), "LOW")
        self.assertEqual(spike_severity(2.0, config), "MEDIUM")
        self.assertEqual(spike_severity(3.2, config), "HIGH")
        self.assertEqual(spike_severity(5.0, config), "EXTREME")

    def test_custom_threshold(self):
        data = calculate_volume_data(spike_candles(160.0), 20)
        self.assertIsNone(classify_volume_spike(data, 100.0, VolumeConfig(low_threshold=1.8, medium_threshold=2.0)))


if __name__ == "__main__":
    unittest.main()
