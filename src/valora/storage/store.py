"""Storage backend: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, ClassVar, Protocol, runtime_checkable

import aiosqlite

from valora.core.config import StorageConfig
from valora.core.exceptions import StorageError
from valora.core.instruments import SEED_INSTRUMENTS
from valora.core.models import (
    Category,
    FetchState,
    FetchStatus,
    HistoryPoint,
    Instrument,
    LatestItem,
    LatestSnapshot,
    LatestView,
    NormalizedQuote,
)

logger = logging.getLogger(__name__)

HOUR = 3_600
DAY = 86_400
YEAR = 365 * DAY

DEFAULT_BATCH_SIZE = 500
DEFAULT_ALERT_THRESHOLD = 5


@runtime_checkable
class QuoteStore(Protocol):
    """Abstract storage interface for quote data."""

    async def append_historical(self, quotes: Sequence[NormalizedQuote]) -> int: ...
    async def upsert_latest(self, quotes: Sequence[NormalizedQuote]) -> None: ...
    async def record_fetch_attempt(
        self, key: str, status: FetchStatus, error: str | None = None
    ) -> FetchState: ...
    async def has_sufficient_history(
        self, scope: str | Category, years: int, tolerance_days: int = 30
    ) -> bool: ...
    async def get_fetch_state(self, key: str) -> FetchState | None: ...
    async def get_latest(self, category: Category) -> LatestView: ...
    async def get_history(
        self,
        instrument_id: str,
        start: int | None = None,
        end: int | None = None,
        limit: int = 1000,
    ) -> list[HistoryPoint]: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


class SqliteStore:
    """SQLite implementation of the quote store.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system. Reads and write units share
    one connection and take turns on a lock, so a read only ever sees
    committed data.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS instruments (
                    id TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    name TEXT NOT NULL,
                    code TEXT NOT NULL,
                    quote_currency TEXT NOT NULL DEFAULT 'TRY',
                    unit TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS quotes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    instrument_id TEXT NOT NULL REFERENCES instruments(id),
                    ts INTEGER NOT NULL,
                    price REAL NOT NULL,
                    buy REAL,
                    sell REAL,
                    source TEXT NOT NULL,
                    raw_json TEXT,
                    created_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS latest_quotes (
                    instrument_id TEXT PRIMARY KEY REFERENCES instruments(id),
                    ts INTEGER NOT NULL,
                    price REAL NOT NULL,
                    price_24h_ago REAL,
                    ts_24h_ago INTEGER,
                    buy REAL,
                    sell REAL,
                    source TEXT NOT NULL,
                    raw_json TEXT,
                    updated_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS fetch_state (
                    key TEXT PRIMARY KEY,
                    last_success_ts INTEGER,
                    last_attempt_ts INTEGER,
                    last_status TEXT,
                    last_error TEXT,
                    consecutive_failures INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT DEFAULT (datetime('now'))
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_quotes_instrument_ts ON quotes(instrument_id, ts)",
                "CREATE INDEX IF NOT EXISTS idx_quotes_source ON quotes(source)",
                "CREATE INDEX IF NOT EXISTS idx_instruments_category ON instruments(category, sort_order)",
            ],
        ),
    }

    def __init__(
        self,
        config: StorageConfig,
        *,
        alert_threshold: int = DEFAULT_ALERT_THRESHOLD,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = config.sqlite_path
        self._alert_threshold = alert_threshold
        self._batch_size = batch_size
        self._clock = clock
        self._db: aiosqlite.Connection | None = None
        # one connection serves readers and writers alike
        self._lock = asyncio.Lock()

    def _now(self) -> int:
        return int(self._clock())

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run statements as one unit: commit on success, roll back on any error.

        Holds the connection lock for the whole unit, so readers never see
        uncommitted rows.
        """
        async with self._lock:
            try:
                yield self._db
            except BaseException:
                await self._db.rollback()
                raise
            await self._db.commit()

    async def initialize(self) -> None:
        """Open connection, enable WAL + FK, run migrations, seed instruments."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e
        await self.seed_instruments()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._lock, self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Instruments ---

    async def seed_instruments(
        self, instruments: Iterable[Instrument] = SEED_INSTRUMENTS
    ) -> int:
        """Insert instruments that do not exist yet. Existing rows are untouched."""
        try:
            inserted = 0
            async with self._transaction() as db:
                for inst in instruments:
                    cursor = await db.execute(
                        """INSERT OR IGNORE INTO instruments
                           (id, category, name, code, quote_currency, unit, sort_order, is_active)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            inst.id,
                            str(inst.category),
                            inst.name,
                            inst.code,
                            inst.quote_currency,
                            inst.unit,
                            inst.sort_order,
                            int(inst.is_active),
                        ),
                    )
                    inserted += cursor.rowcount
            if inserted:
                logger.info("Seeded %d instruments", inserted)
            return inserted
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to seed instruments: {e}",
                context={"operation": "insert", "table": "instruments"},
            ) from e

    async def get_instrument(self, instrument_id: str) -> Instrument | None:
        try:
            async with self._lock, self._db.execute(
                "SELECT * FROM instruments WHERE id = ?", (instrument_id,)
            ) as cursor:
                row = await cursor.fetchone()
            return self._row_to_instrument(row) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get instrument: {e}",
                context={"operation": "query", "table": "instruments", "id": instrument_id},
            ) from e

    async def list_instruments(
        self, category: Category | None = None, active_only: bool = True
    ) -> list[Instrument]:
        try:
            query = "SELECT * FROM instruments WHERE 1=1"
            params: list = []
            if category is not None:
                query += " AND category = ?"
                params.append(str(category))
            if active_only:
                query += " AND is_active = 1"
            query += " ORDER BY category, sort_order"
            async with self._lock, self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_instrument(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list instruments: {e}",
                context={"operation": "query", "table": "instruments"},
            ) from e

    # --- Historical Series ---

    async def append_historical(self, quotes: Sequence[NormalizedQuote]) -> int:
        """Insert every quote as a new row, committing every ``batch_size`` rows.

        No deduplication: the same (instrument, ts) may be stored many times.
        A batch that fails is rolled back whole; earlier batches stay.
        Returns the number of rows inserted.
        """
        if not quotes:
            return 0
        try:
            inserted = 0
            for i in range(0, len(quotes), self._batch_size):
                batch = quotes[i : i + self._batch_size]
                async with self._transaction() as db:
                    await db.executemany(
                        """INSERT INTO quotes
                           (instrument_id, ts, price, buy, sell, source, raw_json)
                           VALUES (?, ?, ?, ?, ?, ?, ?)""",
                        [
                            (
                                q.instrument_id,
                                q.ts,
                                q.price,
                                q.buy,
                                q.sell,
                                q.source,
                                _dump_raw(q.raw_data),
                            )
                            for q in batch
                        ],
                    )
                inserted += len(batch)
            logger.debug("Appended %d historical quotes", inserted)
            return inserted
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to append historical quotes: {e}",
                context={"operation": "insert", "table": "quotes"},
            ) from e

    async def get_history(
        self,
        instrument_id: str,
        start: int | None = None,
        end: int | None = None,
        limit: int = 1000,
    ) -> list[HistoryPoint]:
        """Points for one instrument, newest first."""
        try:
            query = "SELECT ts, price, buy, sell, source FROM quotes WHERE instrument_id = ?"
            params: list = [instrument_id]
            if start is not None:
                query += " AND ts >= ?"
                params.append(start)
            if end is not None:
                query += " AND ts <= ?"
                params.append(end)
            query += " ORDER BY ts DESC, id DESC LIMIT ?"
            params.append(limit)
            async with self._lock, self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [
                HistoryPoint(
                    ts=r["ts"], price=r["price"], buy=r["buy"], sell=r["sell"], source=r["source"]
                )
                for r in rows
            ]
        except Exception as e:
            raise StorageError(
                f"Failed to get history: {e}",
                context={"operation": "query", "table": "quotes", "instrument_id": instrument_id},
            ) from e

    async def count_quotes(
        self, instrument_id: str | None = None, source: str | None = None
    ) -> int:
        try:
            query = "SELECT COUNT(*) FROM quotes WHERE 1=1"
            params: list = []
            if instrument_id is not None:
                query += " AND instrument_id = ?"
                params.append(instrument_id)
            if source is not None:
                query += " AND source = ?"
                params.append(source)
            async with self._lock, self._db.execute(query, params) as cursor:
                row = await cursor.fetchone()
            return row[0]
        except Exception as e:
            raise StorageError(
                f"Failed to count quotes: {e}",
                context={"operation": "query", "table": "quotes"},
            ) from e

    async def oldest_ts(self, scope: str | Category) -> int | None:
        """Timestamp of the oldest stored quote for an instrument or a category."""
        try:
            if isinstance(scope, Category):
                sql = """SELECT MIN(q.ts) FROM quotes q
                         JOIN instruments i ON i.id = q.instrument_id
                         WHERE i.category = ?"""
                params = (str(scope),)
            else:
                sql = "SELECT MIN(ts) FROM quotes WHERE instrument_id = ?"
                params = (scope,)
            async with self._lock, self._db.execute(sql, params) as cursor:
                row = await cursor.fetchone()
            return row[0]
        except Exception as e:
            raise StorageError(
                f"Failed to query oldest quote: {e}",
                context={"operation": "query", "table": "quotes", "scope": str(scope)},
            ) from e

    async def has_sufficient_history(
        self, scope: str | Category, years: int, tolerance_days: int = 30
    ) -> bool:
        """True when the oldest quote is at or before ``now - years`` plus tolerance."""
        oldest = await self.oldest_ts(scope)
        if oldest is None:
            return False
        cutoff = self._now() - years * YEAR + tolerance_days * DAY
        return oldest <= cutoff

    async def purge_source(self, source: str) -> tuple[int, int]:
        """Delete historical and snapshot rows written by one source tag.

        Returns (historical rows deleted, snapshot rows deleted).
        """
        try:
            async with self._transaction() as db:
                cur = await db.execute("DELETE FROM quotes WHERE source = ?", (source,))
                historical = cur.rowcount
                cur = await db.execute("DELETE FROM latest_quotes WHERE source = ?", (source,))
                latest = cur.rowcount
            logger.warning(
                "Purged source %s: %d historical, %d latest rows", source, historical, latest
            )
            return historical, latest
        except Exception as e:
            raise StorageError(
                f"Failed to purge source {source}: {e}",
                context={"operation": "delete", "table": "quotes", "source": source},
            ) from e

    # --- Latest Snapshot ---

    async def _find_24h_ago(self, instrument_id: str, now: int) -> tuple[float, int] | None:
        window_start = now - 36 * HOUR
        window_end = now - 12 * HOUR
        async with self._db.execute(
            """SELECT price, ts FROM quotes
               WHERE instrument_id = ? AND ts >= ? AND ts <= ?
               ORDER BY ts ASC LIMIT 1""",
            (instrument_id, window_start, window_end),
        ) as cursor:
            row = await cursor.fetchone()
        return (row["price"], row["ts"]) if row is not None else None

    async def upsert_latest(self, quotes: Sequence[NormalizedQuote]) -> None:
        """Overwrite each instrument's snapshot, in call order.

        The 24h reference is the oldest historical row inside the window
        ``[now - 36h, now - 12h]``; None when that window is empty. Must only
        be called by live refreshes, never by backfill.
        """
        if not quotes:
            return
        now = self._now()
        try:
            async with self._transaction() as db:
                rows = []
                for q in quotes:
                    ref = await self._find_24h_ago(q.instrument_id, now)
                    price_24h, ts_24h = ref if ref is not None else (None, None)
                    rows.append(
                        (
                            q.instrument_id,
                            q.ts,
                            q.price,
                            price_24h,
                            ts_24h,
                            q.buy,
                            q.sell,
                            q.source,
                            _dump_raw(q.raw_data),
                        )
                    )
                await db.executemany(
                    """INSERT INTO latest_quotes
                       (instrument_id, ts, price, price_24h_ago, ts_24h_ago,
                        buy, sell, source, raw_json, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
                       ON CONFLICT(instrument_id) DO UPDATE SET
                        ts = excluded.ts,
                        price = excluded.price,
                        price_24h_ago = excluded.price_24h_ago,
                        ts_24h_ago = excluded.ts_24h_ago,
                        buy = excluded.buy,
                        sell = excluded.sell,
                        source = excluded.source,
                        raw_json = excluded.raw_json,
                        updated_at = excluded.updated_at""",
                    rows,
                )
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to upsert latest quotes: {e}",
                context={"operation": "upsert", "table": "latest_quotes"},
            ) from e

    async def get_snapshot(self, instrument_id: str) -> LatestSnapshot | None:
        try:
            async with self._lock, self._db.execute(
                "SELECT * FROM latest_quotes WHERE instrument_id = ?", (instrument_id,)
            ) as cursor:
                row = await cursor.fetchone()
            return self._row_to_snapshot(row) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get snapshot: {e}",
                context={"operation": "query", "table": "latest_quotes"},
            ) from e

    async def get_latest(self, category: Category) -> LatestView:
        """Snapshots of the category's active instruments, in display order."""
        try:
            async with self._lock, self._db.execute(
                """SELECT l.*, i.name, i.code FROM latest_quotes l
                   JOIN instruments i ON i.id = l.instrument_id
                   WHERE i.category = ? AND i.is_active = 1
                   ORDER BY i.sort_order, i.id""",
                (str(category),),
            ) as cursor:
                rows = await cursor.fetchall()
            items = [
                LatestItem(
                    instrument_id=r["instrument_id"],
                    ts=r["ts"],
                    price=r["price"],
                    price_24h_ago=r["price_24h_ago"],
                    ts_24h_ago=r["ts_24h_ago"],
                    buy=r["buy"],
                    sell=r["sell"],
                    source=r["source"],
                    name=r["name"],
                    code=r["code"],
                )
                for r in rows
            ]
            return LatestView(
                category=category,
                items=items,
                last_updated_ts=max((i.ts for i in items), default=None),
            )
        except Exception as e:
            raise StorageError(
                f"Failed to get latest quotes: {e}",
                context={"operation": "query", "table": "latest_quotes"},
            ) from e

    # --- Fetch State ---

    async def get_fetch_state(self, key: str) -> FetchState | None:
        try:
            async with self._lock, self._db.execute(
                "SELECT * FROM fetch_state WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
            return self._row_to_fetch_state(row) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get fetch state: {e}",
                context={"operation": "query", "table": "fetch_state", "key": key},
            ) from e

    async def record_fetch_attempt(
        self, key: str, status: FetchStatus, error: str | None = None
    ) -> FetchState:
        """Upsert the fetch-state row for one category.

        - in_progress: stamps last_attempt_ts, leaves the counter alone.
        - success: resets the counter, stamps last_success_ts, clears the error.
        - error: increments the counter and stores the message.
        """
        now = self._now()
        try:
            if status == FetchStatus.IN_PROGRESS:
                sql = """INSERT INTO fetch_state (key, last_attempt_ts, last_status, updated_at)
                         VALUES (?, ?, ?, datetime('now'))
                         ON CONFLICT(key) DO UPDATE SET
                          last_attempt_ts = excluded.last_attempt_ts,
                          last_status = excluded.last_status,
                          updated_at = excluded.updated_at"""
                params: tuple = (key, now, str(status))
            elif status == FetchStatus.SUCCESS:
                sql = """INSERT INTO fetch_state
                         (key, last_success_ts, last_attempt_ts, last_status, last_error,
                          consecutive_failures, updated_at)
                         VALUES (?, ?, ?, ?, NULL, 0, datetime('now'))
                         ON CONFLICT(key) DO UPDATE SET
                          last_success_ts = excluded.last_success_ts,
                          last_attempt_ts = excluded.last_attempt_ts,
                          last_status = excluded.last_status,
                          last_error = NULL,
                          consecutive_failures = 0,
                          updated_at = excluded.updated_at"""
                params = (key, now, now, str(status))
            else:
                sql = """INSERT INTO fetch_state
                         (key, last_attempt_ts, last_status, last_error,
                          consecutive_failures, updated_at)
                         VALUES (?, ?, ?, ?, 1, datetime('now'))
                         ON CONFLICT(key) DO UPDATE SET
                          last_attempt_ts = excluded.last_attempt_ts,
                          last_status = excluded.last_status,
                          last_error = excluded.last_error,
                          consecutive_failures = fetch_state.consecutive_failures + 1,
                          updated_at = excluded.updated_at"""
                params = (key, now, str(status), error)
            async with self._transaction() as db:
                await db.execute(sql, params)
        except Exception as e:
            raise StorageError(
                f"Failed to record fetch attempt: {e}",
                context={"operation": "upsert", "table": "fetch_state", "key": key},
            ) from e

        state = await self.get_fetch_state(key)
        if status == FetchStatus.ERROR and state.consecutive_failures >= self._alert_threshold:
            logger.error(
                "ALERT: %s refresh has failed %d times in a row (last error: %s)",
                key, state.consecutive_failures, error,
            )
        return state

    # --- Row Conversion ---

    @staticmethod
    def _row_to_instrument(row: aiosqlite.Row) -> Instrument:
        return Instrument(
            id=row["id"],
            category=Category(row["category"]),
            name=row["name"],
            code=row["code"],
            quote_currency=row["quote_currency"],
            unit=row["unit"],
            sort_order=row["sort_order"],
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _row_to_snapshot(row: aiosqlite.Row) -> LatestSnapshot:
        return LatestSnapshot(
            instrument_id=row["instrument_id"],
            ts=row["ts"],
            price=row["price"],
            price_24h_ago=row["price_24h_ago"],
            ts_24h_ago=row["ts_24h_ago"],
            buy=row["buy"],
            sell=row["sell"],
            source=row["source"],
            raw_data=_load_raw(row["raw_json"]),
            updated_at=_parse_sqlite_time(row["updated_at"]),
        )

    @staticmethod
    def _row_to_fetch_state(row: aiosqlite.Row) -> FetchState:
        return FetchState(
            key=row["key"],
            last_success_ts=row["last_success_ts"],
            last_attempt_ts=row["last_attempt_ts"],
            last_status=FetchStatus(row["last_status"]) if row["last_status"] else None,
            last_error=row["last_error"],
            consecutive_failures=row["consecutive_failures"],
            updated_at=_parse_sqlite_time(row["updated_at"]),
        )


def _dump_raw(raw: Any) -> str | None:
    return json.dumps(raw, ensure_ascii=False, default=str) if raw is not None else None


def _load_raw(text: str | None) -> Any:
    return json.loads(text) if text else None


def _parse_sqlite_time(text: str | None) -> datetime | None:
    return datetime.fromisoformat(text) if text else None


async def create_store(
    config: StorageConfig,
    *,
    alert_threshold: int = DEFAULT_ALERT_THRESHOLD,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> SqliteStore:
    """Create and initialize the SQLite store."""
    store = SqliteStore(config, alert_threshold=alert_threshold, batch_size=batch_size)
    await store.initialize()
    return store
