"""Twelve Data REST API async client.

Fetches historical candles for session replay.  A failed request is
reported as ``DataUnavailable`` straight away; there are no retries, the
caller degrades to synthetic data instead.
"""

import logging
from datetime import datetime, timezone

import httpx

from replaydesk.config import Config
from replaydesk.errors import DataUnavailable
from replaydesk.market.models import Candle

logger = logging.getLogger("replaydesk.market")


class TwelveDataClient:
    """Async client wrapping the Twelve Data ``time_series`` endpoint."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.twelvedata_base_url.rstrip("/")
        self._api_key = config.twelvedata_api_key
        self._timeout = config.request_timeout_seconds

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 1000,
    ) -> list[Candle]:
        """Fetch candlestick data from Twelve Data.

        Args:
            symbol: Provider symbol, e.g. ``"EUR/USD"``.
            interval: e.g. ``"1h"``, ``"1day"``.
            limit: number of candles to request (``outputsize``).

        Returns:
            List of ``Candle`` objects ordered oldest-first.

        Raises:
            DataUnavailable: on transport errors, HTTP errors, an error
                payload, or an empty ``values`` list.
        """
        if not self._api_key:
            raise DataUnavailable("Twelve Data API key not configured")

        url = f"{self._base_url}/time_series"
        params = {
            "symbol": symbol,
            "interval": interval,
            "outputsize": limit,
            "timezone": "UTC",
            "apikey": self._api_key,
        }

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(url, params=params, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Twelve Data %s %s failed: %s", symbol, interval, exc)
            raise DataUnavailable(f"Twelve Data request failed: {exc}") from exc

        if data.get("status") == "error":
            raise DataUnavailable(
                f"Twelve Data error for {symbol}: {data.get('message', 'unknown')}"
            )

        values = data.get("values") or []
        if not values:
            raise DataUnavailable(f"Twelve Data returned no candles for {symbol}")

        candles: list[Candle] = []
        try:
            for v in values:
                volume = v.get("volume")
                candles.append(
                    Candle(
                        time=_parse_datetime(v["datetime"]),
                        open=float(v["open"]),
                        high=float(v["high"]),
                        low=float(v["low"]),
                        close=float(v["close"]),
                        volume=float(volume) if volume not in (None, "") else None,
                    )
                )
        except (KeyError, TypeError, ValueError) as exc:
            raise DataUnavailable(f"Malformed candle from Twelve Data: {exc}") from exc
        # Twelve Data returns newest-first
        candles.sort(key=lambda c: c.time)
        return candles


def _parse_datetime(raw: str) -> datetime:
    """Parse ``"2025-01-10 14:00:00"`` or ``"2025-01-10"`` as UTC."""
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
