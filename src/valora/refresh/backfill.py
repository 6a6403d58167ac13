"""Historical backfill from the archive providers.

Idempotent: every target is checked with ``has_sufficient_history`` first
and skipped when the store already reaches back far enough. A failing
target is logged and counted, and the run moves on to the next one.
Backfill only appends historical rows; it never touches snapshots.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Callable

from valora.core.config import BackfillConfig
from valora.core.exceptions import NoDataAvailable, SourceError, StorageError
from valora.core.instruments import ALTININ_BACKFILL, HAREMALTIN_BACKFILL, BackfillTarget
from valora.core.models import BackfillSummary, Category
from valora.sources.base import HistorySource
from valora.storage.store import QuoteStore

logger = logging.getLogger(__name__)

_FX_ALL = "*"


class BackfillController:
    """Fills the historical series for metals (archives) and fx (central bank)."""

    def __init__(
        self,
        store: QuoteStore,
        *,
        archive: HistorySource | None = None,
        secondary_archive: HistorySource | None = None,
        fx_history: HistorySource | None = None,
        config: BackfillConfig | None = None,
        archive_targets: Sequence[BackfillTarget] = HAREMALTIN_BACKFILL,
        secondary_targets: Sequence[BackfillTarget] = ALTININ_BACKFILL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._archive = archive
        self._secondary = secondary_archive
        self._fx_history = fx_history
        self._config = config or BackfillConfig()
        self._archive_targets = tuple(archive_targets)
        self._secondary_targets = tuple(secondary_targets)
        self._clock = clock

    def _window(self, years: int) -> tuple[datetime, datetime]:
        end = datetime.fromtimestamp(self._clock())
        return end - timedelta(days=365 * years), end

    async def backfill_targets(
        self,
        source: HistorySource,
        targets: Sequence[BackfillTarget],
        years: int,
    ) -> BackfillSummary:
        """Backfill each (code, instrument) pair from one history source."""
        start, end = self._window(years)
        inserted = skipped = succeeded = failed = empty = 0

        for target in targets:
            try:
                if await self._store.has_sufficient_history(
                    target.instrument_id, years, self._config.tolerance_days
                ):
                    logger.debug("%s already has %d years of history, skipping", target.instrument_id, years)
                    skipped += 1
                    continue

                logger.info("Backfilling %s from %s (%s)", target.instrument_id, source.source, target.code)
                quotes = await source.fetch_history(target.code, start, end)
                if not quotes:
                    logger.warning("%s returned no history for %s", source.source, target.code)
                    empty += 1
                    continue

                inserted += await self._store.append_historical(quotes)
                succeeded += 1
                logger.info("Backfilled %s: %d quotes", target.instrument_id, len(quotes))
            except NoDataAvailable:
                logger.warning("%s has no data for %s", source.source, target.code)
                empty += 1
            except (SourceError, StorageError) as e:
                failed += 1
                logger.error("Failed to backfill %s from %s: %s", target.instrument_id, source.source, e)
            except Exception:
                # a malformed payload must not end the run for every later target
                failed += 1
                logger.exception("Unexpected error backfilling %s from %s", target.instrument_id, source.source)

        return BackfillSummary(
            inserted=inserted, skipped=skipped, succeeded=succeeded, failed=failed, empty=empty
        )

    async def backfill_metals(self, years: int | None = None) -> BackfillSummary:
        years = years or self._config.metals_years
        summary = BackfillSummary()

        if self._archive is None or not getattr(self._archive, "configured", True):
            logger.warning(
                "Archive session cookie is not set, skipping %d archive instruments",
                len(self._archive_targets),
            )
        else:
            summary = summary.merge(
                await self.backfill_targets(self._archive, self._archive_targets, years)
            )

        if self._secondary is not None:
            summary = summary.merge(
                await self.backfill_targets(self._secondary, self._secondary_targets, years)
            )

        logger.info(
            "Metals backfill completed: %d quotes, %d skipped, %d succeeded, %d failed, %d empty",
            summary.inserted, summary.skipped, summary.succeeded, summary.failed, summary.empty,
        )
        return summary

    async def backfill_fx(self, years: int | None = None) -> BackfillSummary:
        """Day-by-day central bank bulletins for the whole fx category."""
        years = years or self._config.fx_years
        if self._fx_history is None:
            return BackfillSummary()

        try:
            if await self._store.has_sufficient_history(
                Category.FX, years, self._config.tolerance_days
            ):
                logger.info("Historical forex data already exists, skipping backfill")
                return BackfillSummary(skipped=1)

            start, end = self._window(years)
            logger.info("Starting %d-year forex backfill from %s", years, self._fx_history.source)
            quotes = await self._fx_history.fetch_history(_FX_ALL, start, end)
            if not quotes:
                logger.warning("No historical forex data received")
                return BackfillSummary(empty=1)

            inserted = await self._store.append_historical(quotes)
        except (SourceError, StorageError) as e:
            logger.error("Forex backfill failed: %s", e)
            return BackfillSummary(failed=1)
        except Exception:
            logger.exception("Unexpected error in forex backfill")
            return BackfillSummary(failed=1)

        logger.info("Forex backfill completed: %d quotes", inserted)
        return BackfillSummary(inserted=inserted, succeeded=1)

    async def run(
        self,
        *,
        metals_years: int | None = None,
        fx_years: int | None = None,
        include_fx: bool = True,
    ) -> BackfillSummary:
        """Forex first (cheap, single source), then metals."""
        summary = BackfillSummary()
        if include_fx:
            summary = summary.merge(await self.backfill_fx(fx_years))
        summary = summary.merge(await self.backfill_metals(metals_years))
        return summary
