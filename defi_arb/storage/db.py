"""SQLite opportunity store."""

import sqlite3
import threading
from pathlib import Path
from typing import Dict, List, Any, Optional
from loguru import logger

from defi_arb.core.types import VenueKind
from .base import OpportunityStore
from .models import ArbitrageOpportunity, OpportunityStatus, check_update_fields

_COLUMNS = [
    'id', 'asset', 'buy_exchange', 'sell_exchange', 'buy_price', 'sell_price',
    'profit_amount', 'profit_percentage', 'timestamp', 'status', 'risk_score',
    'confidence', 'buy_kind', 'sell_kind', 'executed_at', 'actual_profit',
    'actual_profit_percentage',
]


def _to_db(field: str, value: Any) -> Any:
    if isinstance(value, (OpportunityStatus, VenueKind)):
        return value.value
    return value


def _from_row(row: sqlite3.Row) -> ArbitrageOpportunity:
    data = {column: row[column] for column in _COLUMNS}
    data['status'] = OpportunityStatus(data['status'])
    data['buy_kind'] = VenueKind(data['buy_kind']) if data['buy_kind'] else None
    data['sell_kind'] = VenueKind(data['sell_kind']) if data['sell_kind'] else None
    return ArbitrageOpportunity(**data)


class SqliteOpportunityStore(OpportunityStore):
    """SQLite database interface for opportunities.

    A single connection is shared and serialised by a lock; the status
    compare-and-set is one ``UPDATE ... WHERE status = ?`` statement.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path) if db_path != ":memory:" else db_path
        self.connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    async def connect(self):
        """Connect to database."""
        try:
            self.connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self.connection.row_factory = sqlite3.Row
            self._create_tables()
            logger.info(f"Connected to database: {self.db_path}")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def disconnect(self):
        """Disconnect from database."""
        if self.connection:
            self.connection.close()
            self.connection = None
            logger.info("Disconnected from database")

    async def close(self) -> None:
        await self.disconnect()

    def _create_tables(self):
        """Create database tables if they don't exist."""
        with self._lock:
            cursor = self.connection.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS opportunities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    asset TEXT NOT NULL,
                    buy_exchange TEXT NOT NULL,
                    sell_exchange TEXT NOT NULL,
                    buy_price REAL NOT NULL,
                    sell_price REAL NOT NULL,
                    profit_amount REAL NOT NULL,
                    profit_percentage REAL NOT NULL,
                    timestamp REAL NOT NULL,
                    status TEXT NOT NULL,
                    risk_score REAL NOT NULL DEFAULT 0,
                    confidence REAL NOT NULL DEFAULT 0,
                    buy_kind TEXT,
                    sell_kind TEXT,
                    executed_at REAL,
                    actual_profit REAL,
                    actual_profit_percentage REAL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_opportunities_route
                ON opportunities (asset, buy_exchange, sell_exchange, status)
            """)
            self.connection.commit()
        logger.debug("Database tables created/verified")

    def _require_connection(self) -> sqlite3.Connection:
        if not self.connection:
            raise RuntimeError("Database is not connected")
        return self.connection

    async def get_opportunity(self, opportunity_id: int) -> Optional[ArbitrageOpportunity]:
        conn = self._require_connection()
        with self._lock:
            row = conn.execute("SELECT * FROM opportunities WHERE id = ?", (opportunity_id,)).fetchone()
        return _from_row(row) if row else None

    async def list_opportunities(self, active_only: bool = False) -> List[ArbitrageOpportunity]:
        conn = self._require_connection()
        query = "SELECT * FROM opportunities"
        params: tuple = ()
        if active_only:
            query += " WHERE status = ?"
            params = (OpportunityStatus.ACTIVE.value,)
        query += " ORDER BY timestamp DESC, id DESC"
        with self._lock:
            rows = conn.execute(query, params).fetchall()
        return [_from_row(row) for row in rows]

    async def create_opportunity(self, opportunity: ArbitrageOpportunity) -> ArbitrageOpportunity:
        conn = self._require_connection()
        columns = _COLUMNS[1:]
        values = [_to_db(c, getattr(opportunity, c)) for c in columns]
        with self._lock:
            cursor = conn.execute(
                f"INSERT INTO opportunities ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            conn.commit()
            new_id = cursor.lastrowid
        return await self.get_opportunity(new_id)

    async def update_opportunity(self, opportunity_id: int, fields: Dict[str, Any]) -> Optional[ArbitrageOpportunity]:
        check_update_fields(fields)
        if fields:
            conn = self._require_connection()
            assignments = ", ".join(f"{name} = ?" for name in fields)
            values = [_to_db(name, value) for name, value in fields.items()]
            with self._lock:
                conn.execute(f"UPDATE opportunities SET {assignments} WHERE id = ?", (*values, opportunity_id))
                conn.commit()
        return await self.get_opportunity(opportunity_id)

    async def compare_and_set_status(self, opportunity_id: int, expected: OpportunityStatus,
                                     new: OpportunityStatus, fields: Optional[Dict[str, Any]] = None) -> bool:
        fields = fields or {}
        check_update_fields(fields)
        if "status" in fields:
            raise ValueError("Pass the new status as `new`, not in fields")

        conn = self._require_connection()
        assignments = ", ".join(["status = ?"] + [f"{name} = ?" for name in fields])
        values = [new.value] + [_to_db(name, value) for name, value in fields.items()]
        with self._lock:
            cursor = conn.execute(
                f"UPDATE opportunities SET {assignments} WHERE id = ? AND status = ?",
                (*values, opportunity_id, expected.value),
            )
            conn.commit()
            return cursor.rowcount == 1
