"""ReplayDesk — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
the serve and headless replay modes.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from replaydesk.api import routers
from replaydesk.api.routers import router


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    # Stop every session's tick task on shutdown.
    if routers._session_manager is not None:
        routers._session_manager.close_all()


app = FastAPI(title="ReplayDesk Internal API", version="0.1.0", lifespan=lifespan)
app.include_router(router)

logger = logging.getLogger("replaydesk")


@app.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


def build_manager(config):
    """Wire the candle loader (with its provider, if configured) into a manager."""
    from replaydesk.market.loader import CandleLoader
    from replaydesk.market.twelvedata_client import TwelveDataClient
    from replaydesk.session_manager import SessionManager

    provider = TwelveDataClient(config) if config.market_data_enabled else None
    if provider is None:
        logger.info("TWELVEDATA_API_KEY not set — sessions replay synthetic candles.")
    return SessionManager(config=config, loader=CandleLoader(provider))


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv=None) -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from replaydesk.api.routers import configure_routers
    from replaydesk.config import load_config

    parser = argparse.ArgumentParser(description="ReplayDesk backtest replay")
    parser.add_argument(
        "--mode",
        choices=["serve", "replay"],
        default="serve",
        help="Run the API server or a headless replay (default: serve)",
    )
    parser.add_argument("--instrument", default="EURUSD", help="Instrument code")
    parser.add_argument("--interval", help="Candle interval (default: DEFAULT_INTERVAL)")
    parser.add_argument("--limit", type=int, help="Number of candles to replay")
    parser.add_argument(
        "--speed", type=float, default=1.0, help="Playback speed multiplier",
    )
    args = parser.parse_args(argv)

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    manager = build_manager(config)

    if args.mode == "replay":
        asyncio.run(
            _run_replay(manager, args.instrument, args.interval, args.limit, args.speed)
        )
    else:
        configure_routers(session_manager=manager)
        _run_server(config.api_port)


def _run_server(port: int) -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    logger.info("API available at http://localhost:%d", port)
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


async def _run_replay(manager, instrument: str, interval, limit, speed: float) -> dict:
    """Replay *instrument* to the last candle and print the final status."""
    from replaydesk.cli.dashboard import print_status

    session = await manager.create_session(
        instrument=instrument.upper(),
        interval=interval,
        limit=limit,
        speed_multiplier=speed,
    )
    logger.info(
        "Replaying %s (%d candles) at %sx.", session.name, len(session.series), speed,
    )
    try:
        session.play()
        await session.wait_finished()
        status = session.snapshot()
        status["performance"] = session.performance().to_dict()
        print_status(status)
        return status
    finally:
        manager.close_all()


if __name__ == "__main__":
    _run_cli()
