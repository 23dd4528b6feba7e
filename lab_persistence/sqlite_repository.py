"""
SQLite implementation of the smoke-run repository.

Uses aiosqlite for async operations.
"""

from datetime import datetime
from pathlib import Path

import aiosqlite

from lab_common.models import CheckResult, SmokeRun

from .repository import RunRepository


class SQLiteRunRepository(RunRepository):
    """
    SQLite-based smoke-run storage.

    Uses a single database file with two tables:
    - runs: One row per smoke run
    - checks: Ordered check results with foreign key to runs
    """

    def __init__(self, db_path: str = "history.db"):
        """
        Initialize the SQLite repository.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self.db_path)
            # Enable foreign key constraints
            await self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    async def initialize(self) -> None:
        """
        Create database tables if they don't exist.

        Schema:
        - runs table: id, started_at, finished_at, success
        - checks table: ordered check results per run
        """
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                success INTEGER NOT NULL DEFAULT 0
            )
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS checks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                passed INTEGER NOT NULL,
                detail TEXT,
                duration_seconds REAL NOT NULL DEFAULT 0,
                FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE CASCADE
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_checks_run_id
            ON checks(run_id)
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def create_run(self, run: SmokeRun) -> None:
        """
        Persist a run and its checks in one transaction.

        Args:
            run: SmokeRun to persist
        """
        conn = await self._get_connection()

        await conn.execute(
            """
            INSERT INTO runs (id, started_at, finished_at, success)
            VALUES (?, ?, ?, ?)
            """,
            (
                run.id,
                run.started_at.isoformat(),
                run.finished_at.isoformat() if run.finished_at else None,
                1 if run.success else 0,
            ),
        )
        await conn.executemany(
            """
            INSERT INTO checks (run_id, position, name, passed, detail, duration_seconds)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    run.id,
                    position,
                    check.name,
                    1 if check.passed else 0,
                    check.detail,
                    check.duration_seconds,
                )
                for position, check in enumerate(run.checks)
            ],
        )
        await conn.commit()

    async def _get_checks(self, run_id: str) -> list[CheckResult]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT name, passed, detail, duration_seconds FROM checks
            WHERE run_id = ? ORDER BY position
            """,
            (run_id,),
        )
        rows = await cursor.fetchall()
        return [
            CheckResult(
                name=row[0],
                passed=bool(row[1]),
                detail=row[2] or "",
                duration_seconds=row[3],
            )
            for row in rows
        ]

    def _row_to_run(self, row, checks: list[CheckResult]) -> SmokeRun:
        return SmokeRun(
            id=row[0],
            started_at=datetime.fromisoformat(row[1]),
            finished_at=datetime.fromisoformat(row[2]) if row[2] else None,
            checks=checks,
        )

    async def get_run(self, run_id: str) -> SmokeRun | None:
        """
        Retrieve a run with all its checks.

        Args:
            run_id: UUID of the run

        Returns:
            SmokeRun if found, None otherwise
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT id, started_at, finished_at FROM runs WHERE id = ?",
            (run_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_run(row, await self._get_checks(run_id))

    async def list_runs(self, limit: int | None = None) -> list[SmokeRun]:
        """
        List runs, most recent first.

        Args:
            limit: Maximum number of runs to return

        Returns:
            List of SmokeRun objects
        """
        conn = await self._get_connection()
        query = "SELECT id, started_at, finished_at FROM runs ORDER BY started_at DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_run(row, await self._get_checks(row[0])) for row in rows]

    async def delete_run(self, run_id: str) -> bool:
        """
        Delete a run; its checks go with it (ON DELETE CASCADE).

        Returns:
            True if a run was deleted
        """
        conn = await self._get_connection()
        cursor = await conn.execute("DELETE FROM runs WHERE id = ?", (run_id,))
        await conn.commit()
        return cursor.rowcount > 0
