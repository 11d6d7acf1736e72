"""Async SQLite store for scheduled automations.

Uses aiosqlite with WAL mode. Decimal amounts are stored as TEXT and
restored as Decimal on read.
"""

import os
from decimal import Decimal
from typing import Self

import aiosqlite

from autopilot.logging import get_logger
from autopilot.models import AutomationKind, Frequency, ScheduledAutomation, SwapCondition
from autopilot.scheduling.store import ScheduledAutomationStore

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS automations (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    next_execute_at REAL,
    frequency TEXT,
    asset TEXT,
    amount TEXT,
    recipient TEXT,
    memo TEXT,
    asset_from TEXT,
    asset_to TEXT,
    amount_from TEXT,
    condition TEXT,
    condition_value TEXT,
    slippage TEXT NOT NULL DEFAULT '0.5'
);

CREATE INDEX IF NOT EXISTS idx_automations_due
    ON automations(active, next_execute_at);
"""

_COLUMNS = (
    "id, kind, active, next_execute_at, frequency, asset, amount, recipient, memo, "
    "asset_from, asset_to, amount_from, condition, condition_value, slippage"
)


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _row_to_automation(row: tuple) -> ScheduledAutomation:
    return ScheduledAutomation(
        id=row[0],
        kind=AutomationKind(row[1]),
        active=bool(row[2]),
        next_execute_at=row[3],
        frequency=Frequency(row[4]) if row[4] is not None else None,
        asset=row[5],
        amount=_dec(row[6]),
        recipient=row[7],
        memo=row[8],
        asset_from=row[9],
        asset_to=row[10],
        amount_from=_dec(row[11]),
        condition=SwapCondition(row[12]) if row[12] is not None else None,
        condition_value=_dec(row[13]),
        slippage=Decimal(row[14]),
    )


class SqliteAutomationStore(ScheduledAutomationStore):
    """SQLite-backed ScheduledAutomationStore.

    Usage:
        async with SqliteAutomationStore("data/automations.db") as store:
            due = await store.list_due(time.time())
    """

    def __init__(self, db_path: str = "data/automations.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas, and create the schema."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.executescript(_CREATE_TABLES_SQL)

        cursor = await self._connection.execute("SELECT version FROM schema_version LIMIT 1")
        if await cursor.fetchone() is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
        await self._connection.commit()
        logger.info("automation_store_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("automation_store_closed", db_path=self._db_path)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def add(self, automation: ScheduledAutomation) -> None:
        """Insert or replace an automation row."""
        await self.db.execute(
            f"INSERT OR REPLACE INTO automations ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                automation.id,
                automation.kind.value,
                int(automation.active),
                automation.next_execute_at,
                automation.frequency.value if automation.frequency else None,
                automation.asset,
                _str(automation.amount),
                automation.recipient,
                automation.memo,
                automation.asset_from,
                automation.asset_to,
                _str(automation.amount_from),
                automation.condition.value if automation.condition else None,
                _str(automation.condition_value),
                str(automation.slippage),
            ),
        )
        await self.db.commit()
        logger.debug("automation_saved", automation_id=automation.id, kind=automation.kind.value)

    async def advance(self, automation_id: str, next_execute_at: float) -> None:
        await self.db.execute(
            "UPDATE automations SET next_execute_at = ? WHERE id = ?",
            (next_execute_at, automation_id),
        )
        await self.db.commit()

    async def deactivate(self, automation_id: str) -> None:
        await self.db.execute(
            "UPDATE automations SET active = 0, next_execute_at = NULL WHERE id = ?",
            (automation_id,),
        )
        await self.db.commit()

    async def set_active(self, automation_id: str, active: bool) -> None:
        await self.db.execute(
            "UPDATE automations SET active = ? WHERE id = ?",
            (int(active), automation_id),
        )
        await self.db.commit()

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get(self, automation_id: str) -> ScheduledAutomation | None:
        cursor = await self.db.execute(
            f"SELECT {_COLUMNS} FROM automations WHERE id = ?", (automation_id,)
        )
        row = await cursor.fetchone()
        return _row_to_automation(row) if row is not None else None

    async def list_active(self) -> list[ScheduledAutomation]:
        cursor = await self.db.execute(
            f"SELECT {_COLUMNS} FROM automations WHERE active = 1 ORDER BY id"
        )
        rows = await cursor.fetchall()
        return [_row_to_automation(row) for row in rows]

    async def list_due(self, now: float) -> list[ScheduledAutomation]:
        cursor = await self.db.execute(
            f"SELECT {_COLUMNS} FROM automations "
            "WHERE active = 1 AND next_execute_at IS NOT NULL AND next_execute_at <= ? "
            "ORDER BY next_execute_at",
            (now,),
        )
        rows = await cursor.fetchall()
        return [_row_to_automation(row) for row in rows]
