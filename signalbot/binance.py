from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import pandas as pd
import requests

from .config import BACK_OFF_FACTOR, KLINE_LIMIT, RETRIES
from .logger import get_logger
from .models import Candle
from .utils import candles_from_frame, to_milliseconds

logger = get_logger(__name__)


class BinanceClient:
    """Candle source backed by the public Binance market data API."""

    # API Endpoints
    BASE_URL = "https://api.binance.com"
    KLINES_PATH = "/api/v3/klines"
    TICKER_PRICE_PATH = "/api/v3/ticker/price"

    KLINE_COLUMNS = [
        'timestamp', 'open', 'high', 'low', 'close', 'volume',
        'close_time', 'quote_volume', 'trades', 'taker_buy_base',
        'taker_buy_quote', 'ignore'
    ]

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ) -> None:
        self.base_url = base_url or self.BASE_URL
        self.session = session or requests.Session()
        self.sleep = sleep

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None
    ) -> Optional[Any]:
        """Make HTTP request to Binance API, retrying rate limits and transport errors."""
        url = f"{self.base_url}{path}"

        retry = 0
        while retry < RETRIES:
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    params=params
                )
                response.raise_for_status()
                return response.json()

            except requests.exceptions.HTTPError as exc:
                status = exc.response.status_code if exc.response is not None else None
                if status == 429:
                    retry += 1
                    retry_after = exc.response.headers.get("Retry-After")
                    wait_time = int(retry_after) if retry_after else BACK_OFF_FACTOR ** retry
                    logger.warning(f"Rate limit exceeded (429). Retrying in {wait_time} seconds... (Attempt {retry}/{RETRIES})")
                    self.sleep(wait_time)
                else:
                    logger.error(f"HTTPError calling {path}: {exc}. No retry for status {status}.")
                    return None

            except requests.exceptions.RequestException as exc:
                retry += 1
                wait_time = BACK_OFF_FACTOR ** retry
                logger.warning(f"Error calling {path}: {exc}. Retrying in {wait_time} seconds... (Attempt {retry}/{RETRIES})")
                self.sleep(wait_time)

        logger.error(f"Max retries reached for {path}.")
        return None

    def get_klines(
        self,
        symbol: str,
        interval: str,
        limit: int = KLINE_LIMIT,
        start_time: Any = None,
        end_time: Any = None,
    ) -> pd.DataFrame:
        """
        Fetch klines/candlestick data.

        Args:
            symbol: Trading pair (e.g., 'BTCUSDT')
            interval: Kline interval ('1m','3m','5m','15m','30m','1h',...,'1w')
            limit: Number of klines to fetch (max 1000)
            start_time: Start time; epoch seconds or milliseconds, ISO string or datetime (optional)
            end_time: End time, same forms as start_time (optional)

        Returns:
            DataFrame indexed by open timestamp with open, high, low, close,
            volume and close_time columns. Empty on failure.
        """
        params: Dict[str, Any] = {
            "symbol": symbol.upper(),
            "interval": interval,
            "limit": limit
        }
        start_ms = to_milliseconds(start_time)
        end_ms = to_milliseconds(end_time)
        if start_ms is not None:
            params["startTime"] = start_ms
        if end_ms is not None:
            params["endTime"] = end_ms

        result = self._request("GET", self.KLINES_PATH, params=params)

        if not result:
            return pd.DataFrame()

        # Convert to DataFrame with epoch-millisecond timestamps
        df = pd.DataFrame(result, columns=self.KLINE_COLUMNS)

        # Convert types
        for col in ['timestamp', 'close_time']:
            df[col] = (
                pd.to_numeric(df[col], errors='coerce')
                .fillna(0)
                .astype('int64')
            )
        for col in ['open', 'high', 'low', 'close', 'volume']:
            df[col] = df[col].astype(float)

        return df[['timestamp', 'open', 'high', 'low', 'close', 'volume', 'close_time']].set_index('timestamp')

    def get_candles(self, symbol: str, interval: str, limit: int = KLINE_LIMIT) -> List[Candle]:
        return candles_from_frame(self.get_klines(symbol, interval, limit=limit))

    def get_price(self, symbol: str) -> Optional[float]:
        """Latest traded price for ``symbol``."""
        result = self._request("GET", self.TICKER_PRICE_PATH, params={"symbol": symbol.upper()})
        if not result or "price" not in result:
            return None
        try:
            return float(result["price"])
        except (TypeError, ValueError):
            return None
