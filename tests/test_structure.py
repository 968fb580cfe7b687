import unittest

from factories import make_candle, make_candles
from signalbot.config import StructureConfig
from signalbot.errors import ComputationSkipped
from signalbot.models import StructurePoint
from signalbot.structure import (
    analyze_market_structure,
    analyze_patterns,
    classify_structure,
    detect_market_structure,
    detect_structure_points,
    market_trend,
    structure_confidence,
)


def points(*swings):
    return [StructurePoint(price=price, index=i, kind=kind) for i, (kind, price) in enumerate(swings)]


class TestClassifyStructure(unittest.TestCase):
    def test_higher_high(self):
        self.assertEqual(classify_structure(points(("LOW", 90), ("HIGH", 100), ("LOW", 95), ("HIGH", 110))), "HH")

    def test_higher_low(self):
        self.assertEqual(classify_structure(points(("HIGH", 100), ("LOW", 90), ("HIGH", 110), ("LOW", 95))), "HL")

    def test_lower_low(self):
        self.assertEqual(classify_structure(points(("HIGH", 110), ("LOW", 95), ("HIGH", 100), ("LOW", 90))), "LL")

    def test_lower_high(self):
        self.assertEqual(classify_structure(points(("LOW", 95), ("HIGH", 110), ("LOW", 90), ("HIGH", 100))), "LH")

    def test_higher_high_needs_rising_low(self):
        # latest high is higher but the lows fell
        self.assertIsNone(classify_structure(points(("LOW", 95), ("HIGH", 100), ("LOW", 90), ("HIGH", 110))))

    def test_non_alternating_window_is_skipped(self):
        self.assertIsNone(classify_structure(points(("HIGH", 100), ("HIGH", 105), ("LOW", 90), ("HIGH", 110))))

    def test_needs_four_points(self):
        self.assertIsNone(classify_structure(points(("LOW", 90), ("HIGH", 100), ("LOW", 95))))


class TestStructureSignal(unittest.TestCase):
    def test_break_signal(self):
        swing = points(("LOW", 90), ("HIGH", 100), ("LOW", 95), ("HIGH", 110))
        signal = analyze_market_structure(swing, 110.0, StructureConfig(), timestamp=123)
        self.assertEqual(signal.structure_type, "HH")
        self.assertEqual(signal.direction, "BULLISH")
        self.assertEqual(signal.kind, "BREAK")
        self.assertEqual(signal.priority, "HIGH")
        self.assertEqual(signal.trend, "BULLISH")
        self.assertAlmostEqual(signal.change_percent, 10.0)
        self.assertEqual(signal.confidence, 100.0)
        self.assertAlmostEqual(signal.take_profit, 110 * 1.02)
        self.assertAlmostEqual(signal.stop_loss, 110 * 0.99)
        self.assertEqual(signal.timestamp, 123)

    def test_continuation_signal(self):
        swing = points(("HIGH", 110), ("LOW", 95), ("HIGH", 100), ("LOW", 94.5))
        signal = analyze_market_structure(swing, 95.0)
        self.assertEqual(signal.structure_type, "LL")
        swing = points(("LOW", 95), ("HIGH", 110), ("LOW", 90), ("HIGH", 109))
        signal = analyze_market_structure(swing, 105.0)
        self.assertEqual(signal.structure_type, "LH")
        self.assertEqual(signal.direction, "BEARISH")
        self.assertEqual(signal.kind, "CONTINUATION")
        self.assertEqual(signal.priority, "MEDIUM")
        self.assertAlmostEqual(signal.take_profit, 105 * 0.98)
        self.assertAlmostEqual(signal.stop_loss, 105 * 1.01)

    def test_confidence(self):
        self.assertAlmostEqual(structure_confidence(101, 100, "HL"), 20.0)
        self.assertAlmostEqual(structure_confidence(101, 100, "HH"), 24.0)
        self.assertEqual(structure_confidence(101, 0, "HH"), 0.0)

    def test_market_trend(self):
        self.assertEqual(market_trend(points(("LOW", 90), ("HIGH", 100), ("LOW", 95), ("HIGH", 110))), "BULLISH")
        self.assertEqual(market_trend(points(("HIGH", 110), ("LOW", 95), ("HIGH", 100), ("LOW", 90))), "BEARISH")
        self.assertEqual(market_trend(points(("LOW", 90), ("HIGH", 100))), "SIDEWAYS")

    def test_double_top(self):
        swing = points(("LOW", 90), ("HIGH", 100), ("LOW", 92), ("HIGH", 100.5), ("LOW", 94), ("HIGH", 101))
        patterns = analyze_patterns(swing)
        self.assertTrue(patterns["DOUBLE_TOP"])
        self.assertTrue(patterns["ASCENDING_TRIANGLE"])
        self.assertFalse(patterns["DESCENDING_TRIANGLE"])

    def test_patterns_need_six_points(self):
        self.assertFalse(any(analyze_patterns(points(("LOW", 90), ("HIGH", 100))).values()))


class TestStructurePoints(unittest.TestCase):
    def test_swings_come_from_highs_and_lows(self):
        closes = [10, 11, 12, 11, 10, 11, 13, 12, 11]
        candles = [make_candle(i * 1000, high=c + 0.5, low=c - 0.5, close=c) for i, c in enumerate(closes)]
        swing = detect_structure_points(candles, 2)
        self.assertEqual([(p.kind, p.index, p.price) for p in swing], [
            ("HIGH", 2, 12.5),
            ("LOW", 4, 9.5),
            ("HIGH", 6, 13.5),
        ])
        self.assertEqual(swing[0].timestamp, 2000)

    def test_detect_needs_min_candles(self):
        self.assertIsNone(detect_market_structure(make_candles([1.0] * 19), None, StructureConfig()))

    def test_detect_without_four_swings_is_skipped(self):
        with self.assertRaises(ComputationSkipped):
            detect_market_structure(make_candles([100.0] * 25), None, StructureConfig())

    def test_detect_on_zigzag(self):
        closes = [100, 101, 103, 101, 100, 99, 98, 100, 104, 102, 100, 100.5, 101, 103, 106, 103, 101, 102, 103, 104, 105]
        candles = make_candles([float(c) for c in closes], spread=0.5)
        signal = detect_market_structure(candles, 105.0, StructureConfig())
        self.assertIsNotNone(signal)
        self.assertEqual(signal.structure_type, "HL")
        self.assertEqual(signal.direction, "BULLISH")
        self.assertEqual(signal.level, 100.5)
        self.assertEqual(signal.previous_level, 99.5)
        self.assertEqual(signal.price, 105.0)


if __name__ == "__main__":
    unittest.main()
