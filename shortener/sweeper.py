"""Expiry sweeper worker entry point.

Periodically deactivates links whose expiry has passed. Runs as its own
process next to the API::

    shortener-sweep                 # every EXPIRY_SWEEP_INTERVAL_SECONDS
    shortener-sweep --interval 60
    shortener-sweep --once          # single pass, e.g. from cron
"""

import argparse
import asyncio
import logging
import signal
import sys

from shortener.config import get_settings
from shortener.dependencies import ServiceManager
from shortener.errors import ServiceError
from shortener.url_service import URLService

__all__ = ["run_sweeper", "main"]


async def run_sweeper(
    service: URLService,
    interval_seconds: float,
    logger: logging.Logger,
    once: bool = False,
    stop: asyncio.Event | None = None,
) -> int:
    """Sweep until ``stop`` is set (or once); returns the total number of links deactivated."""
    stop = stop or asyncio.Event()
    total = 0

    while not stop.is_set():
        try:
            swept = await service.sweep_expired()
            total += swept
            logger.info(f"Expiry sweep finished: {swept} deactivated")
        except ServiceError as e:
            # A failed pass is retried on the next tick.
            logger.error(f"Expiry sweep failed: {e}")

        if once:
            break
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except TimeoutError:
            pass

    return total


async def _run(interval_seconds: float, once: bool) -> None:
    manager = ServiceManager(get_settings())
    logger = manager.logger.getChild("sweeper")
    await manager.initialize()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(f"Starting expiry sweeper (interval={interval_seconds}s, once={once})")
    try:
        await run_sweeper(manager.url_service, interval_seconds, logger, once=once, stop=stop)
    finally:
        await manager.cleanup()
        logger.info("Expiry sweeper stopped")


def main(argv: list[str] | None = None) -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="shortener-sweep", description="Deactivate expired short URLs.")
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
        help="seconds between sweeps (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    if args.interval <= 0:
        parser.error("--interval must be positive")

    try:
        asyncio.run(_run(args.interval, args.once))
    except Exception as e:
        logging.getLogger("shortener").error(f"Expiry sweeper failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
