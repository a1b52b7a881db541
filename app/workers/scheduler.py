from __future__ import annotations

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.container import ServiceHub

logger = logging.getLogger(__name__)


class WorkerScheduler:
    def __init__(self, hub: ServiceHub) -> None:
        self.hub = hub
        self.settings = hub.settings
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    async def _poll_mentions(self) -> None:
        count = await self.hub.mention_poller.run_once()
        if count:
            logger.info("mentions_processed", extra={"event": "mentions_processed", "count": count})

    async def _expire_conversations(self) -> None:
        try:
            count = self.hub.conversation_manager.expire_stale_conversations()
        except Exception as exc:  # noqa: BLE001
            logger.exception("expiry_sweep_failed", extra={"event": "expiry_sweep_failed", "error": str(exc)})
            return
        if count:
            logger.info("conversations_expired", extra={"event": "conversations_expired", "count": count})

    def start(self) -> None:
        self.scheduler.add_job(
            self._poll_mentions,
            "interval",
            seconds=self.settings.mention_poll_interval_sec,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.add_job(
            self._expire_conversations,
            "interval",
            seconds=self.settings.expiry_sweep_interval_sec,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(
            "polling_mode_started",
            extra={"event": "polling_mode_started", "interval_sec": self.settings.mention_poll_interval_sec},
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
