"""Periodic sweep of expired slot holds.

Expired holds are already ignored at read time; the sweep only keeps the
table from growing. Usage with FastAPI:

    @app.on_event("startup")
    async def startup():
        asyncio.create_task(sweeper.start())
"""
import asyncio

from logging_config import get_logger
from slot_holds import SlotHoldManager

logger = get_logger(__name__)


class HoldSweeper:
    def __init__(self, manager: SlotHoldManager, interval: float = 60):
        self.manager = manager
        self.interval = interval
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the sweep loop until stop() is called or the task is cancelled."""
        if self._running:
            logger.info("hold_sweeper_already_running")
            return

        self._running = True
        logger.info("hold_sweeper_started", interval=self.interval)

        try:
            while self._running:
                await asyncio.sleep(self.interval)
                try:
                    await self.run_once()
                except Exception:
                    # One bad pass must not end the loop
                    logger.exception("hold_sweep_failed")
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False
        logger.info("hold_sweeper_stopped")

    async def run_once(self) -> int:
        # cleanup_expired_holds logs and swallows storage errors itself
        return await self.manager.cleanup_expired_holds()
