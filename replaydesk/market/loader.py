"""Candle loader — provider fetch with synthetic fallback."""

import logging
from datetime import datetime
from typing import Optional, Protocol

from replaydesk.errors import DataUnavailable
from replaydesk.market.instruments import provider_symbol
from replaydesk.market.models import Candle, CandleSeries, interval_duration
from replaydesk.market.synthetic import generate_series

logger = logging.getLogger("replaydesk.market")


class CandleProvider(Protocol):
    """Anything that can fetch candles for a provider symbol."""

    async def fetch_candles(
        self, symbol: str, interval: str, limit: int = 1000,
    ) -> list[Candle]:
        ...


class CandleLoader:
    """Builds ``CandleSeries`` for sessions.

    Args:
        provider: A ``TwelveDataClient`` (or duck-type), or ``None`` when
                  no provider is configured.
    """

    def __init__(self, provider: Optional[CandleProvider] = None) -> None:
        self._provider = provider

    async def load(self, instrument: str, interval: str, limit: int) -> CandleSeries:
        """Fetch *limit* candles for *instrument* from the provider.

        Raises ``DataUnavailable`` when there is no provider, the provider
        fails, or it returns zero candles.  No retries.
        """
        interval_duration(interval)  # reject unknown intervals early
        if self._provider is None:
            raise DataUnavailable("No market data provider configured")

        try:
            candles = await self._provider.fetch_candles(
                provider_symbol(instrument), interval, limit,
            )
        except DataUnavailable:
            raise
        except Exception as exc:
            raise DataUnavailable(f"Provider failed for {instrument}: {exc}") from exc

        if not candles:
            raise DataUnavailable(f"Provider returned no candles for {instrument}")

        try:
            return CandleSeries.from_candles(
                candles, instrument=instrument, interval=interval, source="provider",
            )
        except ValueError as exc:
            raise DataUnavailable(f"Invalid candle data for {instrument}: {exc}") from exc

    async def load_with_fallback(
        self,
        instrument: str,
        interval: str,
        limit: int,
        end: Optional[datetime] = None,
    ) -> CandleSeries:
        """Like :meth:`load`, but substitutes synthetic data on failure."""
        try:
            series = await self.load(instrument, interval, limit)
            logger.info(
                "Loaded %d %s candles for %s from provider.",
                len(series), interval, instrument,
            )
            return series
        except DataUnavailable as exc:
            logger.warning(
                "Market data unavailable for %s %s (%s) — using synthetic candles.",
                instrument, interval, exc.message,
            )
            return generate_series(instrument, interval, limit, end=end)
