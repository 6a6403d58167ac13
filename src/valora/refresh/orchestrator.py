"""Refresh orchestration for the metals and fx categories.

Each category moves ``idle -> in_progress -> success | error`` once per
attempt. Attempts are gated by a cooldown on the last attempt time, and
``refresh_if_stale`` gates scheduled ticks on the last success time.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from valora.core.config import RefreshConfig
from valora.core.exceptions import RefreshError, SourceError
from valora.core.models import Category, FetchStatus, NormalizedQuote, RefreshResult
from valora.sources.base import CurrentSource
from valora.storage.store import QuoteStore

logger = logging.getLogger(__name__)

FetchOutcome = tuple[list[NormalizedQuote], bool]


class RefreshOrchestrator:
    """Sequences adapters, persistence and fetch-state for each category.

    Metals: primary feed, optionally augmented with instruments the
    primary does not carry. FX: primary feed, with a single fallback
    when the primary raises or returns nothing. Source and storage
    failures end up as an ``error`` fetch-state row and a failed
    RefreshResult; nothing propagates to the caller.
    """

    def __init__(
        self,
        store: QuoteStore,
        *,
        metals_source: CurrentSource,
        fx_primary: CurrentSource,
        fx_fallback: CurrentSource | None = None,
        metals_augment: CurrentSource | None = None,
        config: RefreshConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._metals_source = metals_source
        self._fx_primary = fx_primary
        self._fx_fallback = fx_fallback
        self._metals_augment = metals_augment
        self._config = config or RefreshConfig()
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    # --- Gates ---

    async def can_refresh(self, category: Category) -> bool:
        """True if there was no prior attempt or the cooldown has elapsed."""
        state = await self._store.get_fetch_state(str(category))
        if state is None or state.last_attempt_ts is None:
            return True
        return self._now() - state.last_attempt_ts >= self._config.cooldown_seconds

    async def is_stale(self, category: Category) -> bool:
        state = await self._store.get_fetch_state(str(category))
        if state is None or state.last_success_ts is None:
            return True
        return self._now() - state.last_success_ts >= self._config.stale_after_seconds

    async def refresh_if_stale(self, category: Category) -> RefreshResult | None:
        """Refresh when the last success is older than the staleness threshold.

        Returns None when the category is fresh and nothing was attempted.
        """
        if not await self.is_stale(category):
            logger.debug("%s data is fresh, skipping refresh", category)
            return None
        return await self.refresh(category)

    # --- Refresh Paths ---

    async def refresh(self, category: Category) -> RefreshResult:
        if category == Category.METALS:
            return await self.refresh_metals()
        return await self.refresh_fx()

    async def refresh_all(self) -> list[RefreshResult]:
        return [await self.refresh_metals(), await self.refresh_fx()]

    async def refresh_metals(self) -> RefreshResult:
        return await self._run(Category.METALS, self._fetch_metals)

    async def refresh_fx(self) -> RefreshResult:
        return await self._run(Category.FX, self._fetch_fx)

    async def _fetch_metals(self) -> FetchOutcome:
        quotes = await self._metals_source.fetch_current()
        if not quotes:
            raise RefreshError(
                f"No metals data received from {self._metals_source.source}",
                context={"category": "metals"},
            )

        if self._config.augment_metals and self._metals_augment is not None:
            quotes = quotes + await self._augment(quotes)
        return quotes, False

    async def _augment(self, primary: list[NormalizedQuote]) -> list[NormalizedQuote]:
        """Quotes from the augment source for instruments the primary lacks."""
        if not getattr(self._metals_augment, "configured", True):
            return []
        try:
            extra = await self._metals_augment.fetch_current()
        except SourceError as e:
            logger.warning(
                "%s augment failed, continuing with primary metals only: %s",
                self._metals_augment.source, e,
            )
            return []
        covered = {q.instrument_id for q in primary}
        merged = [q for q in extra if q.instrument_id not in covered]
        if merged:
            logger.info("Merged %d %s quotes into metals", len(merged), self._metals_augment.source)
        return merged

    async def _fetch_fx(self) -> FetchOutcome:
        try:
            quotes = await self._fx_primary.fetch_current()
            if not quotes:
                raise RefreshError(
                    f"No forex data received from {self._fx_primary.source}",
                    context={"category": "fx"},
                )
            logger.info("Forex fetched from %s: %d quotes", self._fx_primary.source, len(quotes))
            return quotes, False
        except (SourceError, RefreshError) as primary_error:
            if self._fx_fallback is None:
                raise
            logger.warning(
                "%s (primary) failed, trying %s: %s",
                self._fx_primary.source, self._fx_fallback.source, primary_error,
            )

        try:
            quotes = await self._fx_fallback.fetch_current()
        except SourceError as e:
            raise RefreshError(
                f"All forex sources failed: {e}", context={"category": "fx"}
            ) from e
        if not quotes:
            raise RefreshError(
                "All forex sources failed: fallback returned no data",
                context={"category": "fx"},
            )
        logger.info("Forex fetched from %s (fallback): %d quotes", self._fx_fallback.source, len(quotes))
        return quotes, True

    async def _run(
        self, category: Category, fetch: Callable[[], Awaitable[FetchOutcome]]
    ) -> RefreshResult:
        key = str(category)
        if not await self.can_refresh(category):
            logger.warning("%s refresh attempted too soon, skipping", key)
            return RefreshResult(category=category, success=False, skipped=True)

        logger.info("Starting %s refresh", key)
        try:
            await self._store.record_fetch_attempt(key, FetchStatus.IN_PROGRESS)
            quotes, used_fallback = await fetch()
            await self._store.append_historical(quotes)
            await self._store.upsert_latest(quotes)
            await self._store.record_fetch_attempt(key, FetchStatus.SUCCESS)
        except Exception as e:
            if isinstance(e, (SourceError, RefreshError)):
                logger.error("%s refresh failed: %s", key, e)
            else:
                logger.exception("%s refresh failed", key)
            await self._record_error(key, str(e) or type(e).__name__)
            return RefreshResult(category=category, success=False, error=str(e))

        logger.info(
            "%s refresh completed: %d quotes%s",
            key, len(quotes), " (fallback)" if used_fallback else "",
        )
        return RefreshResult(
            category=category,
            success=True,
            quotes_count=len(quotes),
            used_fallback=used_fallback,
        )

    async def _record_error(self, key: str, message: str) -> None:
        try:
            await self._store.record_fetch_attempt(key, FetchStatus.ERROR, message)
        except Exception:
            logger.exception("Could not record %s refresh failure", key)
