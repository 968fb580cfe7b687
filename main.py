from datetime import datetime

from signalbot.binance import BinanceClient
from signalbot.config import load_settings
from signalbot.datastore import SQLiteDataStore
from signalbot.engine import SignalEngine
from signalbot.errors import SignalBotError
from signalbot.logger import get_logger, set_level
from signalbot.scheduler import CandleSyncScheduler

logger = get_logger("signalbot.main")


def main_loop():
    """
    Main loop: wake at every candle close of the shortest timeframe and
    evaluate the timeframes that just closed.
    """
    try:
        config = load_settings()
    except SignalBotError as e:
        logger.error(f"Invalid configuration: {e}")
        return
    set_level(config.log_level)

    datastore = SQLiteDataStore(config.db_path)
    engine = SignalEngine.from_datastore(config, datastore)
    client = BinanceClient()

    logger.info(f"--- Starting signal engine at {datetime.now()} ---")
    logger.info(f"Pairs: {list(config.pairs)} Timeframes: {list(config.timeframes)}")

    scheduler = CandleSyncScheduler(config.smallest_timeframe)
    try:
        scheduler.run(lambda tick_ms: engine.on_tick(client, tick_ms))
    except KeyboardInterrupt:
        logger.info("Interrupted, saving state...")
        scheduler.stop()
    finally:
        engine.save()
        stats = engine.statistics()
        logger.info(
            f"--- Stopped. {stats['total_signals']} signals tracked, "
            f"{stats['active_signals']} active, win rate {stats['win_rate']:.1f}% ---"
        )


if __name__ == "__main__":
    main_loop()
