import random
import unittest

from factories import make_candles
from signalbot.config import TPSLConfig, TPSLRule
from signalbot.models import ScalpingSignal, VolumeSpike
from signalbot.tpsl import (
    TPSLCalculator,
    position_size,
    risk_level,
    risk_reward_ratio,
    validate_levels,
)


def assert_ordered(test, result):
    if result.direction == "BULLISH":
        test.assertGreater(result.take_profit, result.entry_price)
        test.assertGreater(result.entry_price, result.stop_loss)
    else:
        test.assertLess(result.take_profit, result.entry_price)
        test.assertLess(result.entry_price, result.stop_loss)
    expected = abs(result.take_profit - result.entry_price) / abs(result.entry_price - result.stop_loss)
    test.assertAlmostEqual(result.risk_reward_ratio, expected)


class TestHelpers(unittest.TestCase):
    def test_risk_reward_ratio(self):
        self.assertAlmostEqual(risk_reward_ratio(100, 102, 99), 2.0)
        self.assertAlmostEqual(risk_reward_ratio(100, 97, 101), 3.0)
        self.assertEqual(risk_reward_ratio(100, 102, 100), 0.0)

    def test_validation_warnings(self):
        self.assertEqual(validate_levels(100, 102, 99, 2.0), ())
        warnings = validate_levels(100, 100.1, 99.8, 0.5)
        self.assertEqual(len(warnings), 2)
        self.assertEqual(len(validate_levels(100, 120, 99, 20.0)), 2)

    def test_risk_level(self):
        self.assertEqual(risk_level(3.5), "LOW")
        self.assertEqual(risk_level(2.0), "MEDIUM")
        self.assertEqual(risk_level(1.5), "HIGH")
        self.assertEqual(risk_level(1.0), "VERY_HIGH")

    def test_position_size(self):
        self.assertAlmostEqual(position_size(1000, 1, 100, 98), 5.0)
        self.assertEqual(position_size(1000, 1, 100, 100), 0.0)


class TestCalculator(unittest.TestCase):
    def setUp(self):
        self.calculator = TPSLCalculator(TPSLConfig())

    def test_percentage_levels_without_atr(self):
        result = self.calculator.rsi_divergence(100.0, True, [])
        self.assertAlmostEqual(result.take_profit, 102.5)
        self.assertAlmostEqual(result.stop_loss, 98.8)
        self.assertEqual(result.atr, 0.0)
        assert_ordered(self, result)

        result = self.calculator.rsi_divergence(100.0, False, [])
        self.assertAlmostEqual(result.take_profit, 97.5)
        self.assertAlmostEqual(result.stop_loss, 101.2)
        assert_ordered(self, result)

    def test_atr_tightens_the_stop(self):
        candles = make_candles([100.0] * 20, spread=0.25)
        result = self.calculator.rsi_divergence(100.0, True, candles)
        self.assertAlmostEqual(result.atr, 0.5)
        self.assertAlmostEqual(result.stop_loss, 99.25)
        self.assertEqual(result.method, "RSI_DIVERGENCE_ATR")
        assert_ordered(self, result)

    def test_wide_atr_keeps_percentage_stop(self):
        candles = make_candles([100.0] * 20, spread=2.0)
        result = self.calculator.macd_divergence(100.0, False, candles)
        self.assertAlmostEqual(result.stop_loss, 101.5)
        self.assertAlmostEqual(result.take_profit, 97.0)

    def test_structure_uses_support(self):
        candles = make_candles([100.0] * 20, spread=0.25)
        result = self.calculator.market_structure(100.0, "HL", candles)
        self.assertEqual(result.method, "MARKET_STRUCTURE_SUPPORT")
        self.assertAlmostEqual(result.stop_loss, 99.5)
        self.assertAlmostEqual(result.take_profit, 102.0)

        result = self.calculator.market_structure(100.0, "LL", candles)
        self.assertEqual(result.method, "MARKET_STRUCTURE_RESISTANCE")
        self.assertAlmostEqual(result.stop_loss, 100.5)
        assert_ordered(self, result)

    def test_structure_without_history_uses_percentages(self):
        result = self.calculator.market_structure(100.0, "HH", [])
        self.assertAlmostEqual(result.stop_loss, 99.0)

    def test_fixed_structure_rule(self):
        config = TPSLConfig(market_structure=TPSLRule(2.0, 1.0, 1.0, adaptive=False))
        result = TPSLCalculator(config).market_structure(100.0, "HH", [])
        self.assertEqual(result.method, "MARKET_STRUCTURE_BASIC")

    def test_volume_strength_multipliers(self):
        result = self.calculator.volume_spike(100.0, 3.5, [])
        self.assertAlmostEqual(result.tp_percent, 2.25)
        self.assertAlmostEqual(result.sl_percent, 0.56)
        self.assertAlmostEqual(result.take_profit, 102.25)
        self.assertAlmostEqual(result.stop_loss, 99.44)
        self.assertEqual(result.direction, "BULLISH")

        weak = self.calculator.volume_spike(100.0, 1.6, [])
        self.assertAlmostEqual(weak.tp_percent, 1.2)
        self.assertAlmostEqual(weak.sl_percent, 0.96)

    def test_reversal_multipliers(self):
        high = self.calculator.volume_divergence(100.0, "HIGH", False, [])
        self.assertAlmostEqual(high.take_profit, 100 - 2.86)
        self.assertAlmostEqual(high.stop_loss, 100 + 0.66)
        low = self.calculator.volume_divergence(100.0, "LOW", True, [])
        self.assertAlmostEqual(low.tp_percent, 2.2 * 0.9)
        self.assertAlmostEqual(low.sl_percent, 1.1 * 1.1)
        self.assertGreater(low.sl_percent, high.sl_percent)

    def test_for_signal_dispatch(self):
        spike = VolumeSpike(volume_ratio=2.5, current_volume=250, average_volume=100, severity="MEDIUM",
                            price=100.0, price_change_percent=0.0)
        result = self.calculator.for_signal(spike, 100.0, [])
        self.assertEqual(result.signal_type, "VOLUME_SPIKE")
        self.assertAlmostEqual(result.tp_percent, 1.8)

        scalp = ScalpingSignal(kind="BOLLINGER", action="BUY", price=100.0, confidence=80.0, reason="")
        self.assertIsNone(self.calculator.for_signal(scalp, 100.0, []))

    def test_levels_always_bracket_entry(self):
        rng = random.Random(17)
        for _ in range(200):
            entry = rng.uniform(0.5, 50000)
            closes = [entry * rng.uniform(0.9, 1.1) for _ in range(25)]
            candles = make_candles(closes, spread=entry * rng.uniform(0, 0.05))
            bullish = rng.random() < 0.5
            results = [
                self.calculator.rsi_divergence(entry, bullish, candles),
                self.calculator.macd_divergence(entry, bullish, candles),
                self.calculator.market_structure(entry, "HH" if bullish else "LL", candles),
                self.calculator.volume_divergence(entry, rng.choice(["HIGH", "MEDIUM", "LOW"]), bullish, candles),
                self.calculator.volume_spike(entry, rng.uniform(1.5, 6), candles),
            ]
            for result in results:
                assert_ordered(self, result)

    def test_fibonacci_targets(self):
        candles = make_candles([100.0, 110.0] * 10, spread=0.0)
        levels = self.calculator.fibonacci_targets(candles)
        self.assertAlmostEqual(levels["0.5"], 105.0)
        self.assertEqual(self.calculator.fibonacci_targets([]), {})


if __name__ == "__main__":
    unittest.main()
