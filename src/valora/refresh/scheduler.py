"""Periodic refresh triggers: one independent asyncio task per category."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from valora.core.config import RefreshConfig
from valora.core.models import Category
from valora.refresh.orchestrator import RefreshOrchestrator

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Runs ``refresh_if_stale`` for metals and fx on their own intervals.

    Ticks for the two categories interleave freely; within a category the
    orchestrator's cooldown keeps refreshes serialized.
    """

    def __init__(self, orchestrator: RefreshOrchestrator, config: RefreshConfig) -> None:
        self._orchestrator = orchestrator
        self._intervals = {
            Category.METALS: config.metals_interval_seconds,
            Category.FX: config.fx_interval_seconds,
        }
        self._tasks: dict[Category, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    def start(self) -> None:
        for category, interval in self._intervals.items():
            task = self._tasks.get(category)
            if task is None or task.done():
                self._tasks[category] = asyncio.create_task(
                    self._periodic_refresh(category, interval),
                    name=f"refresh-{category}",
                )
        logger.info(
            "Scheduler started: metals every %ds, fx every %ds",
            self._intervals[Category.METALS], self._intervals[Category.FX],
        )

    async def stop(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        for task in self._tasks.values():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        logger.info("Scheduler stopped")

    async def tick(self, category: Category) -> None:
        """One scheduled trigger. Never raises."""
        try:
            await self._orchestrator.refresh_if_stale(category)
        except Exception:
            logger.exception("Scheduled %s refresh crashed", category)

    async def _periodic_refresh(self, category: Category, interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.tick(category)
