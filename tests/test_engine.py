import os
import sqlite3
import tempfile
import unittest
from unittest.mock import Mock, patch

from factories import FIVE_MINUTES_MS, make_candles
from signalbot.config import EngineConfig
from signalbot.datastore import SQLiteDataStore
from signalbot.engine import LoggingNotifier, SignalEngine
from signalbot.models import Alert, DivergenceSignal, ScalpingSignal, TrackerState

NOW_MS = 22 * FIVE_MINUTES_MS


def spike_candles():
    # 21 quiet candles then one with 1.6x the trailing average volume
    return make_candles([100.0] * 22, volumes=[100.0] * 21 + [160.0])


class TestSignalEngine(unittest.TestCase):
    def setUp(self):
        self.config = EngineConfig(pairs=("BTCUSDT",), timeframes=("5m",))
        self.alerts = []
        self.engine = SignalEngine(self.config, notifier=self.alerts.append)

    def test_tick_emits_priced_alerts(self):
        alerts = self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        self.assertEqual([a.kind for a in alerts], ["VOLUME_SPIKE", "SCALPING", "SCALPING"])
        self.assertEqual(self.alerts, alerts)

        spike = alerts[0]
        self.assertEqual(spike.signal.severity, "LOW")
        self.assertAlmostEqual(spike.tpsl.entry_price, 100.0)
        self.assertAlmostEqual(spike.tpsl.take_profit, 101.2)
        self.assertAlmostEqual(spike.tpsl.stop_loss, 99.04)
        record = self.engine.registry.get(spike.record_id)
        self.assertEqual(record.signal_type, "VOLUME_SPIKE")
        self.assertEqual(record.sub_type, "LOW")
        self.assertEqual(record.status, "ACTIVE")

        self.assertEqual({a.signal.kind for a in alerts[1:]}, {"BOLLINGER", "VOLUME_SPIKE"})
        self.assertTrue(all(a.tpsl is None and a.record_id is None for a in alerts[1:]))
        self.assertEqual(len(self.engine.registry.records), 1)

    def test_state_is_stored_per_pair(self):
        self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        state = self.engine.store.get("BTCUSDT", "5m")
        self.assertEqual(len(state.candles), 22)
        self.assertIn("VOLUME_SPIKE", state.gates)
        self.assertEqual(state.last_alert_ms, NOW_MS)

    def test_repeat_within_cooldown_is_suppressed(self):
        self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        again = self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS + 60 * 1000)
        self.assertEqual(again, [])
        self.assertEqual(len(self.engine.registry.records), 1)

    def test_unclosed_candle_is_kept_out_of_history(self):
        candles = spike_candles()
        result = self.engine.evaluate_pair("BTCUSDT", "5m", TrackerState(), candles, NOW_MS - 10)
        self.assertEqual(len(result.state.candles), 21)
        self.assertEqual(result.state.candles[-1].open_time, 20 * FIVE_MINUTES_MS)
        self.assertIn("VOLUME_SPIKE", [kind for kind, _ in result.signals])
        self.assertEqual(result.price, 100.0)

    def test_evaluate_pair_does_not_touch_the_store(self):
        state = TrackerState()
        result = self.engine.evaluate_pair("BTCUSDT", "5m", state, spike_candles(), NOW_MS)
        self.assertEqual(state.candles, ())
        self.assertEqual(len(result.state.candles), 22)
        self.assertEqual(len(self.engine.store), 0)

    def test_failing_detector_does_not_block_siblings(self):
        with patch("signalbot.engine.detect_volume_divergence", side_effect=RuntimeError("boom")), \
                patch("signalbot.engine.detect_macd_divergence", side_effect=ZeroDivisionError()):
            alerts = self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        self.assertIn("VOLUME_SPIKE", [a.kind for a in alerts])

    def test_skipped_detector_is_not_logged_as_failure(self):
        # flat candles have no swing points, so the structure check is skipped
        with patch("signalbot.engine.logger") as log:
            alerts = self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        self.assertEqual(len(alerts), 3)
        messages = [call.args[0] for call in log.error.call_args_list]
        self.assertFalse(any("Market structure" in message for message in messages))

    def test_failing_notifier_does_not_drop_the_record(self):
        engine = SignalEngine(self.config, notifier=Mock(side_effect=RuntimeError("sink down")))
        alerts = engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        self.assertEqual(len(alerts), 3)
        self.assertEqual(len(engine.registry.records), 1)

    def test_failing_fetch_only_skips_its_pair(self):
        config = EngineConfig(pairs=("BTCUSDT", "ETHUSDT"), timeframes=("5m",))
        engine = SignalEngine(config, notifier=self.alerts.append)

        def fetch(symbol, timeframe):
            if symbol == "ETHUSDT":
                raise ConnectionError("timeout")
            return spike_candles()

        alerts = engine.run_tick(fetch, NOW_MS)
        self.assertEqual({a.symbol for a in alerts}, {"BTCUSDT"})
        self.assertEqual(len(engine.store.get("BTCUSDT", "5m").candles), 22)
        self.assertEqual(engine.store.get("ETHUSDT", "5m").candles, ())

    def test_price_moves_close_tracked_signals(self):
        alerts = self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        record_id = alerts[0].record_id

        later = make_candles([100.0] * 22 + [102.0], volumes=[100.0] * 21 + [160.0, 100.0])
        self.engine.process_market({("BTCUSDT", "5m"): later}, NOW_MS + FIVE_MINUTES_MS)
        record = self.engine.registry.get(record_id)
        self.assertEqual(record.status, "TP_HIT")
        self.assertAlmostEqual(record.exit_price, 101.2)
        self.assertEqual(record.duration_minutes, 5)

    def test_on_tick_only_fetches_due_timeframes(self):
        config = EngineConfig(pairs=("BTCUSDT",), timeframes=("5m", "15m"))
        engine = SignalEngine(config, notifier=self.alerts.append)
        client = Mock()
        client.get_candles.return_value = spike_candles()

        engine.on_tick(client, NOW_MS)
        client.get_candles.assert_called_once_with("BTCUSDT", "5m")

        client.get_candles.reset_mock()
        engine.on_tick(client, 3 * FIVE_MINUTES_MS * 8)
        self.assertEqual(client.get_candles.call_count, 2)

    def test_statistics(self):
        self.engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        stats = self.engine.statistics()
        self.assertEqual(stats["total_signals"], 1)
        self.assertEqual(stats["by_type"]["VOLUME_SPIKE"]["count"], 1)


class TestPersistence(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.datastore = SQLiteDataStore(os.path.join(self.tmpdir.name, "engine.db"))
        self.config = EngineConfig(pairs=("BTCUSDT",), timeframes=("5m",))

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_restart_restores_state_and_cooldowns(self):
        engine = SignalEngine.from_datastore(self.config, self.datastore, notifier=lambda alert: None)
        self.assertEqual(len(engine.registry.records), 0)
        engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)

        restarted = SignalEngine.from_datastore(self.config, self.datastore, notifier=lambda alert: None)
        self.assertEqual(len(restarted.registry.records), 1)
        self.assertEqual(restarted.store.get("BTCUSDT", "5m"), engine.store.get("BTCUSDT", "5m"))
        self.assertEqual(restarted.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS + 60 * 1000), [])

    def test_unreadable_storage_starts_empty(self):
        datastore = Mock(spec=SQLiteDataStore)
        datastore.initialize.side_effect = sqlite3.OperationalError("database is locked")
        engine = SignalEngine.from_datastore(self.config, datastore)
        self.assertEqual(len(engine.store), 0)
        self.assertEqual(engine.registry.records, [])

    def test_write_failure_is_not_fatal(self):
        datastore = Mock(spec=SQLiteDataStore)
        datastore.upsert_tracker_states.side_effect = sqlite3.OperationalError("disk I/O error")
        engine = SignalEngine(self.config, datastore=datastore, notifier=lambda alert: None)
        alerts = engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)
        self.assertEqual(len(alerts), 3)
        self.assertFalse(engine.save(NOW_MS))


class TestLoggingNotifier(unittest.TestCase):
    def test_logs_one_line_per_alert(self):
        engine = SignalEngine(EngineConfig(pairs=("BTCUSDT",), timeframes=("5m",)), notifier=lambda alert: None)
        alert = engine.process_market({("BTCUSDT", "5m"): spike_candles()}, NOW_MS)[0]
        with self.assertLogs("signalbot.engine", level="INFO") as logs:
            LoggingNotifier()(alert)
        self.assertEqual(len(logs.records), 1)
        self.assertIn("VOLUME_SPIKE BULLISH BTCUSDT 5m", logs.output[0])

    def test_alert_without_levels(self):
        alert = Alert(kind="SCALPING", symbol="ETHUSDT", timeframe="5m", signal=object(), timestamp=0)
        with self.assertLogs("signalbot.engine", level="INFO") as logs:
            LoggingNotifier()(alert)
        self.assertIn("SCALPING", logs.output[0])

    def test_summary_carries_strength_label(self):
        signal = ScalpingSignal(kind="BOLLINGER", action="BUY", price=100.0, confidence=75.0,
                                reason="band touch", details={}, timestamp=0)
        alert = Alert(kind="SCALPING", symbol="BTCUSDT", timeframe="5m", signal=signal, timestamp=0)
        with self.assertLogs("signalbot.engine", level="INFO") as logs:
            LoggingNotifier()(alert)
        self.assertIn("SCALPING BUY BTCUSDT 5m confidence=75.0 (MEDIUM)", logs.output[0])

    def test_rsi_divergence_reports_zone(self):
        signal = DivergenceSignal(
            indicator="RSI", direction="BULLISH", reference_price=95.0, reference_indicator_value=28.0,
            previous_price=100.0, previous_indicator_value=22.0, confidence=85.0,
            take_profit=95.95, stop_loss=94.05,
        )
        alert = Alert(kind="RSI_DIVERGENCE", symbol="ETHUSDT", timeframe="15m", signal=signal, timestamp=0)
        with self.assertLogs("signalbot.engine", level="INFO") as logs:
            LoggingNotifier()(alert)
        self.assertIn("confidence=85.0 (STRONG) rsi=28.0 (OVERSOLD)", logs.output[0])


if __name__ == "__main__":
    unittest.main()
