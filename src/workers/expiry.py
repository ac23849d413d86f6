"""Periodic sweep that expires turns left active past the expiry window.

Usage:
    turnkeeper-expire --once
    turnkeeper-expire --interval 3600
"""

import argparse
import asyncio

import structlog

from src.domains.turns.lifecycle import TurnLifecycleManager

logger = structlog.get_logger()


class ExpirySweeper:
    """Runs ``expire_old_turns`` on a fixed interval."""

    def __init__(self, manager: TurnLifecycleManager, interval_seconds: int = 3600) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._running = False
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    def run_once(self) -> int:
        count = self.manager.expire_old_turns()
        logger.info("expiry_sweep_completed", expired_count=count)
        return count

    async def run(self) -> None:
        """Sweep until ``stop()``. A failed sweep is logged and retried next interval."""
        self._running = True
        self._stopped.clear()
        logger.info("expiry_sweeper_started", interval_seconds=self.interval_seconds)
        try:
            while self._running:
                try:
                    await asyncio.to_thread(self.run_once)
                except Exception:
                    logger.exception("expiry_sweep_failed")
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_seconds)
                except TimeoutError:
                    continue
        finally:
            self._running = False
            logger.info("expiry_sweeper_stopped")

    def stop(self) -> None:
        self._running = False
        self._stopped.set()


def main(argv: list[str] | None = None) -> int:
    from src.config import settings
    from src.container import build_services
    from src.shared.logging import setup_logging

    parser = argparse.ArgumentParser(description="Expire turns left active too long")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.expiry_sweep_interval_seconds,
        help="Seconds between sweeps",
    )
    args = parser.parse_args(argv)

    setup_logging(settings.log_level, settings.log_format)
    services = build_services()
    sweeper = ExpirySweeper(services.lifecycle, interval_seconds=args.interval)

    if args.once:
        count = sweeper.run_once()
        print(f"Expired {count} old turns.")
        return 0

    try:
        asyncio.run(sweeper.run())
    except KeyboardInterrupt:
        sweeper.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
