"""
SavedConditionStore — SQLite-backed storage for saved search configurations.

Each record is the four policy parameters picked from a phase, plus the
return and trade count they achieved when they were saved.
"""

from typing import Any

import aiosqlite

from ranking_backtester.engine.models import SavedCondition
from ranking_backtester.enums import ConditionSource
from ranking_backtester.logging import get_logger

logger = get_logger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS saved_conditions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    buy_condition_count INTEGER NOT NULL,
    buy_threshold REAL NOT NULL,
    sell_condition_count INTEGER NOT NULL,
    sell_threshold REAL NOT NULL,
    expected_return REAL NOT NULL,
    trade_count INTEGER NOT NULL,
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    memo TEXT
)
"""

CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_conditions_source ON saved_conditions(source);
CREATE INDEX IF NOT EXISTS idx_conditions_created ON saved_conditions(created_at);
"""

_COLUMNS = (
    "id",
    "name",
    "buy_condition_count",
    "buy_threshold",
    "sell_condition_count",
    "sell_threshold",
    "expected_return",
    "trade_count",
    "source",
    "created_at",
    "memo",
)


class SavedConditionStore:
    """Async SQLite-backed store for SavedCondition records."""

    def __init__(self, db_path: str = "data/conditions.db") -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database and tables."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute(CREATE_TABLE_SQL)
        await self._db.executescript(CREATE_INDEX_SQL)
        await self._db.commit()
        logger.info("SavedConditionStore initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def create(self, condition: SavedCondition) -> str:
        record = condition.to_dict()
        placeholders = ", ".join("?" for _ in _COLUMNS)
        await self._db.execute(
            f"INSERT INTO saved_conditions ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            tuple(record[c] for c in _COLUMNS),
        )
        await self._db.commit()
        logger.info(
            "Condition saved",
            condition_id=condition.id,
            name=condition.name,
            source=condition.source.value,
        )
        return condition.id

    async def get(self, condition_id: str) -> SavedCondition | None:
        async with self._db.execute(
            "SELECT * FROM saved_conditions WHERE id=?", (condition_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_condition(row)

    async def list_conditions(
        self,
        source: ConditionSource | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SavedCondition]:
        """Saved conditions, newest first; optionally only those from one phase."""
        if source is not None:
            sql = "SELECT * FROM saved_conditions WHERE source=? ORDER BY created_at DESC LIMIT ? OFFSET ?"
            params: tuple = (ConditionSource(source).value, limit, offset)
        else:
            sql = "SELECT * FROM saved_conditions ORDER BY created_at DESC LIMIT ? OFFSET ?"
            params = (limit, offset)

        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_condition(r) for r in rows]

    async def delete(self, condition_id: str) -> bool:
        cursor = await self._db.execute("DELETE FROM saved_conditions WHERE id=?", (condition_id,))
        await self._db.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Condition deleted", condition_id=condition_id)
        return deleted

    @staticmethod
    def _row_to_condition(row: aiosqlite.Row) -> SavedCondition:
        data: dict[str, Any] = dict(row)
        return SavedCondition.from_dict(data)
