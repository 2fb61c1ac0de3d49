"""
Time-bounded quote cache.

Stores the most recent successful quote per ticker in the stock_cache
table. The cache is an optimization: store failures degrade to a miss and
are never raised to the caller.
"""

import json
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from quote_guard.core.records import QuoteRecord, normalize_ticker

from .db import DEFAULT_DB_PATH, get_connection
from .models import CacheEntry
from .repository import initialize_schema

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 300

# Unreachable paths raise OSError; damaged timestamps raise ValueError.
STORE_ERRORS = (sqlite3.Error, OSError, ValueError)


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class QuoteCache:
    """SQLite-backed cache keyed by normalized ticker."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db_path = db_path
        self._clock = clock

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    def get(self, ticker: str) -> Optional[QuoteRecord]:
        """Return the cached record, or None on miss, expiry or store error.

        Expired entries are deleted as they are read. A hit carries the
        entry's last-write time as its fetched_at.
        """
        key = normalize_ticker(ticker)
        now = self._clock()
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    "SELECT data, updated_at, expires_at FROM stock_cache WHERE ticker = ?",
                    (key,),
                ).fetchone()
                if row is None:
                    logger.debug("cache_miss", ticker=key)
                    return None

                if now >= datetime.fromisoformat(row["expires_at"]):
                    conn.execute("DELETE FROM stock_cache WHERE ticker = ?", (key,))
                    conn.commit()
                    logger.debug("cache_expired", ticker=key)
                    return None

                try:
                    record = QuoteRecord.from_dict(json.loads(row["data"]))
                except (ValueError, KeyError, TypeError) as e:
                    conn.execute("DELETE FROM stock_cache WHERE ticker = ?", (key,))
                    conn.commit()
                    logger.warning("cache_entry_corrupt", ticker=key, error=str(e))
                    return None
                fetched_at = datetime.fromisoformat(row["updated_at"])
            finally:
                conn.close()
        except STORE_ERRORS as e:
            logger.warning("cache_read_failed", ticker=key, error=str(e))
            return None

        logger.debug("cache_hit", ticker=key, source=record.source.value)
        return record.with_fetched_at(fetched_at)

    def set(
        self,
        record: QuoteRecord,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        fetch_duration_ms: Optional[int] = None,
        error_count: int = 0,
    ) -> None:
        """Upsert the record with expires_at = now + ttl_seconds."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds)
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute("""
                    INSERT INTO stock_cache
                    (ticker, created_at, updated_at, expires_at, data, source,
                     fetch_duration_ms, error_count)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(ticker) DO UPDATE SET
                        updated_at = excluded.updated_at,
                        expires_at = excluded.expires_at,
                        data = excluded.data,
                        source = excluded.source,
                        fetch_duration_ms = excluded.fetch_duration_ms,
                        error_count = excluded.error_count
                """, (
                    record.ticker,
                    _ts(now),
                    _ts(now),
                    _ts(expires_at),
                    json.dumps(record.to_dict()),
                    record.source.value,
                    fetch_duration_ms,
                    error_count,
                ))
                conn.commit()
            finally:
                conn.close()
        except STORE_ERRORS as e:
            logger.warning("cache_write_failed", ticker=record.ticker, error=str(e))
            return
        logger.debug("cache_set", ticker=record.ticker, ttl_seconds=ttl_seconds)

    def invalidate(self, ticker: Optional[str] = None) -> int:
        """Remove one ticker, or every entry when ticker is None.

        Returns:
            Number of entries removed (0 on store error)
        """
        try:
            conn = get_connection(self.db_path)
            try:
                if ticker is None:
                    cursor = conn.execute("DELETE FROM stock_cache")
                else:
                    cursor = conn.execute(
                        "DELETE FROM stock_cache WHERE ticker = ?",
                        (normalize_ticker(ticker),),
                    )
                conn.commit()
                removed = cursor.rowcount
            finally:
                conn.close()
        except STORE_ERRORS as e:
            logger.warning("cache_invalidate_failed", ticker=ticker, error=str(e))
            return 0
        logger.info("cache_invalidated", ticker=ticker, removed=removed)
        return removed

    def entry(self, ticker: str) -> Optional[CacheEntry]:
        """Metadata for a cached ticker, expired or not."""
        key = normalize_ticker(ticker)
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    "SELECT * FROM stock_cache WHERE ticker = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
            if row is None:
                return None
            return CacheEntry(
                ticker=row["ticker"],
                source=row["source"],
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
                expires_at=datetime.fromisoformat(row["expires_at"]),
                fetch_duration_ms=row["fetch_duration_ms"],
                error_count=row["error_count"] or 0,
            )
        except STORE_ERRORS as e:
            logger.warning("cache_read_failed", ticker=key, error=str(e))
            return None

    def purge_expired(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute(
                    "DELETE FROM stock_cache WHERE expires_at <= ?",
                    (_ts(self._clock()),),
                )
                conn.commit()
                removed = cursor.rowcount
            finally:
                conn.close()
        except STORE_ERRORS as e:
            logger.warning("cache_purge_failed", error=str(e))
            return 0
        return removed
