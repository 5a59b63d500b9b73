"""Background task for evicting stalled transfer sessions."""

import asyncio
import logging

from receiver.registry import TransferRegistry

logger = logging.getLogger(__name__)


class IdleSessionReaper:
    """
    Background task that periodically expires sessions with no progress.
    """

    def __init__(
        self,
        registry: TransferRegistry,
        idle_timeout_seconds: float,
        interval_seconds: float = 60,
    ):
        """
        Initialize reaper task.

        Args:
            registry: Registry whose sessions are swept
            idle_timeout_seconds: Idle time after which a receiving session expires
            interval_seconds: Time between sweeps
        """
        if idle_timeout_seconds <= 0:
            raise ValueError("idle_timeout_seconds must be positive")
        self.registry = registry
        self.idle_timeout_seconds = idle_timeout_seconds
        self.interval_seconds = interval_seconds
        self._running = False
        self._task = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            logger.warning("Idle reaper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Started idle session reaper (timeout: {self.idle_timeout_seconds}s, "
            f"interval: {self.interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped idle session reaper")

    async def _run(self) -> None:
        """Main loop for sweep task."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                await self.sweep()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in idle reaper: {e}", exc_info=True)

    async def sweep(self) -> list:
        """Execute one sweep and return the expired session ids."""
        expired = await self.registry.evict_idle_sessions(self.idle_timeout_seconds)
        if expired:
            logger.info(f"Sweep complete: expired {len(expired)} idle transfers")
        else:
            logger.debug("Sweep complete: no idle transfers")
        return expired
