"""
Retention Cleanup Service
Runs the event log retention sweep at local midnight, then every 24 hours.

Retention limits (retention_days, max_records) are read from the settings
table on every run, so changes made through the API apply to the next sweep.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def seconds_until_midnight(now: Optional[datetime] = None) -> float:
    """Seconds from `now` (local time) until the next local midnight."""
    now = now or datetime.now()
    next_midnight = datetime(now.year, now.month, now.day) + timedelta(days=1)
    return (next_midnight - now).total_seconds()


class RetentionCleanupService:
    """Background service that applies log retention once a day."""

    DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60

    def __init__(self, event_log, interval_seconds: int = None):
        """
        Args:
            event_log: EventLogService whose cleanup() is called
            interval_seconds: Time between sweeps after the first one
        """
        self.event_log = event_log
        self.interval = interval_seconds or self.DEFAULT_INTERVAL_SECONDS

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats: Dict[str, Any] = {
            "runs": 0,
            "last_run": None,
            "last_result": None,
        }

    async def start(self):
        if self._running:
            logger.warning("RetentionCleanupService is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            f"RetentionCleanupService started - first run in "
            f"{seconds_until_midnight():.0f}s, then every {self.interval}s"
        )

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("RetentionCleanupService stopped")

    async def _cleanup_loop(self):
        await asyncio.sleep(seconds_until_midnight())
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.interval)

    async def run_once(self) -> Optional[Dict[str, int]]:
        """Execute one sweep. Errors are logged, never raised."""
        try:
            result = await asyncio.to_thread(self.event_log.cleanup)
        except Exception as e:
            logger.error(f"Error in retention cleanup: {e}", exc_info=True)
            return None

        self._stats["runs"] += 1
        self._stats["last_run"] = datetime.utcnow().isoformat() + "Z"
        self._stats["last_result"] = result
        return result

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "interval_seconds": self.interval, "running": self._running}


# Global instance (singleton pattern)
_retention_service: Optional[RetentionCleanupService] = None


async def start_retention_cleanup(event_log) -> RetentionCleanupService:
    """Start the global retention cleanup service."""
    global _retention_service

    if _retention_service is None:
        _retention_service = RetentionCleanupService(event_log)
    await _retention_service.start()
    return _retention_service


async def stop_retention_cleanup():
    """Stop the global retention cleanup service."""
    global _retention_service

    if _retention_service:
        await _retention_service.stop()
        _retention_service = None
