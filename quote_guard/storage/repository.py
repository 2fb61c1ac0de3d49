"""
Repository pattern for data access.

Handles the append-only usage ledger and its aggregate queries.
"""

from datetime import datetime
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import Purpose, UsageRecord, UsageSummary


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger and cache tables if they don't exist.

    The ai_usage_log table is an append-only ledger. No UPDATE or DELETE
    is ever performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS ai_usage_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                ticker TEXT NOT NULL,
                purpose TEXT NOT NULL CHECK (purpose IN ('data_fetch', 'analysis')),
                model TEXT NOT NULL,
                provider TEXT NOT NULL DEFAULT 'openrouter',
                tokens_input INTEGER NOT NULL,
                tokens_output INTEGER NOT NULL,
                cost_usd REAL NOT NULL,
                success INTEGER NOT NULL,
                confidence REAL,
                accepted INTEGER,
                error_message TEXT,
                response_time_ms INTEGER
            );
            CREATE INDEX IF NOT EXISTS idx_ai_usage_created_at ON ai_usage_log(created_at);
            CREATE INDEX IF NOT EXISTS idx_ai_usage_purpose ON ai_usage_log(purpose);

            CREATE TABLE IF NOT EXISTS stock_cache (
                ticker TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                data TEXT NOT NULL,
                source TEXT NOT NULL,
                fetch_duration_ms INTEGER,
                error_count INTEGER NOT NULL DEFAULT 0
            );
            CREATE INDEX IF NOT EXISTS idx_stock_cache_expires_at ON stock_cache(expires_at);
        """)
        conn.commit()
    finally:
        conn.close()


def insert_usage_record(record: UsageRecord, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single usage record to the ledger.

    Args:
        record: The usage record to store
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO ai_usage_log
            (created_at, ticker, purpose, model, provider, tokens_input,
             tokens_output, cost_usd, success, confidence, accepted,
             error_message, response_time_ms)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            _ts(record.timestamp),
            record.ticker,
            record.purpose.value,
            record.model,
            record.provider,
            record.tokens_input,
            record.tokens_output,
            record.cost_usd,
            int(record.success),
            record.confidence,
            None if record.accepted is None else int(record.accepted),
            record.error_message,
            record.response_time_ms,
        ))
        conn.commit()
    finally:
        conn.close()


def _row_to_record(row) -> UsageRecord:
    return UsageRecord(
        timestamp=datetime.fromisoformat(row["created_at"]),
        ticker=row["ticker"],
        purpose=Purpose(row["purpose"]),
        model=row["model"],
        provider=row["provider"],
        tokens_input=row["tokens_input"],
        tokens_output=row["tokens_output"],
        cost_usd=row["cost_usd"],
        success=bool(row["success"]),
        confidence=row["confidence"],
        accepted=None if row["accepted"] is None else bool(row["accepted"]),
        error_message=row["error_message"],
        response_time_ms=row["response_time_ms"],
    )


def fetch_recent_usage_records(
    purpose: Optional[Purpose] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH,
) -> List[UsageRecord]:
    """Fetch recent usage records, newest first.

    Args:
        purpose: Optional filter for a specific purpose
        limit: Maximum number of records to return
        db_path: Path to SQLite database file

    Returns:
        List of usage records ordered by timestamp (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = "SELECT * FROM ai_usage_log"
        params: list = []
        if purpose is not None:
            query += " WHERE purpose = ?"
            params.append(Purpose(purpose).value)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return [_row_to_record(row) for row in conn.execute(query, params).fetchall()]
    finally:
        conn.close()


class UsageRepository:
    """Repository for the usage ledger.

    Provides typed access to the ledger and the date-range aggregates the
    budget manager relies on. Errors from sqlite3 propagate to the caller.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    def append(self, record: UsageRecord) -> None:
        insert_usage_record(record, self.db_path)

    def recent(self, purpose: Optional[Purpose] = None, limit: int = 100) -> List[UsageRecord]:
        return fetch_recent_usage_records(purpose=purpose, limit=limit, db_path=self.db_path)

    def records_between(self, start: datetime, end: Optional[datetime] = None) -> List[UsageRecord]:
        """Records with start <= timestamp < end, oldest first."""
        conn = get_connection(self.db_path)
        try:
            query = "SELECT * FROM ai_usage_log WHERE created_at >= ?"
            params = [_ts(start)]
            if end is not None:
                query += " AND created_at < ?"
                params.append(_ts(end))
            query += " ORDER BY created_at ASC, id ASC"
            return [_row_to_record(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def total_cost_since(self, start: datetime, purpose: Optional[Purpose] = None) -> float:
        """Sum of cost_usd for records at or after start."""
        conn = get_connection(self.db_path)
        try:
            query = "SELECT SUM(cost_usd) FROM ai_usage_log WHERE created_at >= ?"
            params = [_ts(start)]
            if purpose is not None:
                query += " AND purpose = ?"
                params.append(Purpose(purpose).value)
            row = conn.execute(query, params).fetchone()
            return float(row[0] or 0)
        finally:
            conn.close()

    def summary_since(self, start: datetime) -> UsageSummary:
        """Aggregate statistics for records at or after start.

        Args:
            start: Inclusive lower bound of the range

        Returns:
            UsageSummary with totals, per-purpose cost and rates
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT
                    COALESCE(SUM(cost_usd), 0) AS total_cost,
                    COUNT(*) AS total_calls,
                    COALESCE(SUM(CASE WHEN success THEN 1 ELSE 0 END), 0) AS successful_calls,
                    COALESCE(SUM(CASE WHEN NOT success THEN 1 ELSE 0 END), 0) AS failed_calls,
                    COALESCE(SUM(CASE WHEN accepted THEN 1 ELSE 0 END), 0) AS accepted_calls,
                    COALESCE(SUM(CASE WHEN confidence IS NOT NULL THEN 1 ELSE 0 END), 0) AS scored_calls,
                    AVG(CASE WHEN success AND confidence IS NOT NULL THEN confidence END) AS avg_confidence
                FROM ai_usage_log
                WHERE created_at >= ?
            """, (_ts(start),)).fetchone()

            by_purpose = {
                r["purpose"]: float(r["cost"] or 0)
                for r in conn.execute("""
                    SELECT purpose, SUM(cost_usd) AS cost
                    FROM ai_usage_log
                    WHERE created_at >= ?
                    GROUP BY purpose
                """, (_ts(start),)).fetchall()
            }

            return UsageSummary(
                total_cost=float(row["total_cost"]),
                total_calls=row["total_calls"],
                successful_calls=row["successful_calls"],
                failed_calls=row["failed_calls"],
                accepted_calls=row["accepted_calls"],
                scored_calls=row["scored_calls"],
                avg_confidence=row["avg_confidence"],
                cost_by_purpose=by_purpose,
            )
        finally:
            conn.close()
