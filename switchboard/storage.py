"""Storage backends for archived budget periods."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List, Optional, Protocol
import sqlite3

from switchboard.cost_ledger import PeriodSnapshot


class LedgerStore(Protocol):
    """Storage backend interface."""

    def save_snapshot(self, snapshot: PeriodSnapshot) -> PeriodSnapshot:
        ...

    def list_snapshots(self, limit: Optional[int] = None) -> List[PeriodSnapshot]:
        ...

    def clear(self) -> None:
        ...


class InMemoryLedgerStore:
    """In-memory storage backend (default)."""

    def __init__(self):
        self._snapshots: List[PeriodSnapshot] = []

    def save_snapshot(self, snapshot: PeriodSnapshot) -> PeriodSnapshot:
        self._snapshots.append(snapshot)
        return snapshot

    def list_snapshots(self, limit: Optional[int] = None) -> List[PeriodSnapshot]:
        """Oldest first; ``limit`` keeps the most recent."""
        if limit is None:
            return list(self._snapshots)
        return self._snapshots[-limit:] if limit > 0 else []

    def clear(self) -> None:
        self._snapshots.clear()


class SQLiteLedgerStore:
    """SQLite-backed storage backend."""

    def __init__(self, db_path: str = "switchboard.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS periods (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                period_start TEXT NOT NULL,
                period_end TEXT NOT NULL,
                budget REAL NOT NULL,
                total REAL NOT NULL,
                requests INTEGER NOT NULL,
                savings REAL NOT NULL,
                by_provider TEXT NOT NULL,
                by_category TEXT NOT NULL,
                by_model TEXT NOT NULL
            )
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_periods_end ON periods(period_end)")
        self._conn.commit()

    def save_snapshot(self, snapshot: PeriodSnapshot) -> PeriodSnapshot:
        self._conn.execute(
            """
            INSERT INTO periods (period_start, period_end, budget, total, requests, savings,
                                 by_provider, by_category, by_model)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot.period_start.isoformat(),
                snapshot.period_end.isoformat(),
                snapshot.budget,
                snapshot.total,
                snapshot.requests,
                snapshot.savings,
                json.dumps(snapshot.by_provider),
                json.dumps(snapshot.by_category),
                json.dumps(snapshot.by_model),
            ),
        )
        self._conn.commit()
        return snapshot

    def _row_to_snapshot(self, row: sqlite3.Row) -> PeriodSnapshot:
        def _ts(value: str) -> datetime:
            ts = datetime.fromisoformat(value)
            return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

        return PeriodSnapshot(
            period_start=_ts(row["period_start"]),
            period_end=_ts(row["period_end"]),
            budget=row["budget"],
            total=row["total"],
            requests=row["requests"],
            savings=row["savings"],
            by_provider=json.loads(row["by_provider"]),
            by_category=json.loads(row["by_category"]),
            by_model=json.loads(row["by_model"]),
        )

    def list_snapshots(self, limit: Optional[int] = None) -> List[PeriodSnapshot]:
        if limit is None:
            rows = self._conn.execute("SELECT * FROM periods ORDER BY id ASC").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM (SELECT * FROM periods ORDER BY id DESC LIMIT ?) ORDER BY id ASC",
                (limit,),
            ).fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    def clear(self) -> None:
        self._conn.execute("DELETE FROM periods")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
