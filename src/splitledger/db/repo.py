from __future__ import annotations

from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Sequence

import asyncpg

from splitledger.db.models import (
    Group,
    Settlement,
    SettlementMethod,
    SettlementStatus,
    SplitExpense,
    SplitLine,
    SplitType,
)
from splitledger.logging import get_logger, sql_logger
from splitledger.services.ledger import SettlementSummary


class Database:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None
        self._conn: ContextVar[asyncpg.Connection | None] = ContextVar("splitledger_conn", default=None)
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql/postgres scheme without "+asyncpg"
            dsn = self._dsn.replace("+asyncpg", "")
            self._pool = await asyncpg.create_pool(dsn)
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    @asynccontextmanager
    async def transaction(self, **options: Any) -> AsyncIterator[asyncpg.Connection]:
        """Run the block on one connection inside a transaction.

        ``options`` go to ``Connection.transaction`` (isolation, readonly).
        Nested blocks reuse the outer connection and become savepoints.
        """
        current = self._conn.get()
        if current is not None:
            async with current.transaction():
                yield current
            return

        await self._ensure_pool()
        assert self._pool
        async with self._pool.acquire() as conn:
            async with conn.transaction(**options):
                token = self._conn.set(conn)
                sql_logger.info("sql.begin")
                try:
                    yield conn
                finally:
                    self._conn.reset(token)
                    sql_logger.info("sql.end")

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        executor = await self._executor()
        sql_logger.info("sql.fetch", query=query, args=args)
        return await executor.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        executor = await self._executor()
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await executor.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        executor = await self._executor()
        sql_logger.info("sql.fetchval", query=query, args=args)
        return await executor.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        executor = await self._executor()
        sql_logger.info("sql.execute", query=query, args=args)
        return await executor.execute(query, *args)

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        executor = await self._executor()
        sql_logger.info("sql.executemany", query=command)
        await executor.executemany(command, args)

    async def _executor(self) -> asyncpg.Connection | asyncpg.Pool:
        conn = self._conn.get()
        if conn is not None:
            return conn
        await self._ensure_pool()
        assert self._pool
        return self._pool

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


def _affected(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


def _line_from_row(row: Mapping[str, Any]) -> SplitLine:
    return SplitLine(
        participant_id=row["participant_id"],
        amount_cents=row["amount_cents"],
        percentage=row["percentage"],
        shares=row["shares"],
        paid=row["paid"],
        paid_at=row["paid_at"],
    )


def _expense_from_row(row: Mapping[str, Any], lines: Sequence[SplitLine]) -> SplitExpense:
    return SplitExpense(
        id=row["id"],
        description=row["description"],
        total_cents=row["total_cents"],
        currency=row["currency"],
        paid_by=row["paid_by"],
        split_type=SplitType(row["split_type"]),
        splits=list(lines),
        created_by=row["created_by"],
        group_id=row["group_id"],
        is_settled=row["is_settled"],
        settled_at=row["settled_at"],
        version=row["version"],
    )


def _settlement_from_row(row: Mapping[str, Any]) -> Settlement:
    return Settlement(
        id=row["id"],
        paid_by=row["paid_by"],
        paid_to=row["paid_to"],
        amount_cents=row["amount_cents"],
        currency=row["currency"],
        settled_at=row["settled_at"],
        group_id=row["group_id"],
        related_expenses=list(row["related_expenses"] or []),
        method=SettlementMethod(row["method"]),
        notes=row["notes"],
        status=SettlementStatus(row["status"]),
        verified_by=row["verified_by"],
        verified_at=row["verified_at"],
        applied_cents=row["applied_cents"],
        is_applied=row["is_applied"],
        version=row["version"],
    )


_SETTLEMENT_SELECT = """
    SELECT s.*,
           array_agg(se.expense_id ORDER BY se.position)
               FILTER (WHERE se.expense_id IS NOT NULL) AS related_expenses
    FROM settlements s
    LEFT JOIN settlement_expenses se ON se.settlement_id = s.id
"""

# Only the part of a verified payment that did not clear split lines still
# moves balances.
_OPEN_SETTLEMENT_FILTER = "s.status = 'verified' AND s.amount_cents > s.applied_cents"


class SplitLedgerRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def transaction(self, **options: Any):
        return self.db.transaction(**options)

    async def get_group(self, group_id: int) -> Group | None:
        row = await self.db.fetchrow("SELECT * FROM groups WHERE id = $1", group_id)
        if row is None:
            return None
        return Group(
            id=row["id"],
            name=row["name"],
            currency=row["currency"],
            total_settled_cents=row["total_settled_cents"],
            version=row["version"],
        )

    async def add_group_settled_total(self, group_id: int, expected_version: int, amount_cents: int) -> bool:
        status = await self.db.execute(
            """
            UPDATE groups
            SET total_settled_cents = total_settled_cents + $3,
                version = version + 1
            WHERE id = $1 AND version = $2
            """,
            group_id,
            expected_version,
            amount_cents,
        )
        return _affected(status) == 1

    async def create_split_expense(
        self,
        description: str,
        total_cents: int,
        currency: str,
        paid_by: int,
        split_type: SplitType,
        lines: Sequence[SplitLine],
        created_by: int,
        group_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> SplitExpense:
        async with self.db.transaction():
            row = await self.db.fetchrow(
                """
                INSERT INTO split_expenses
                    (description, total_cents, currency, paid_by, split_type, group_id, created_by, notes)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING *
                """,
                description,
                total_cents,
                currency,
                paid_by,
                split_type.value,
                group_id,
                created_by,
                notes,
            )
            assert row is not None
            await self.db.executemany(
                """
                INSERT INTO expense_splits
                    (expense_id, participant_id, position, amount_cents, percentage, shares, paid, paid_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                (
                    (
                        row["id"],
                        line.participant_id,
                        position,
                        line.amount_cents,
                        line.percentage,
                        line.shares,
                        line.paid,
                        line.paid_at,
                    )
                    for position, line in enumerate(lines)
                ),
            )
        return _expense_from_row(row, lines)

    async def get_expense(self, expense_id: int, for_update: bool = False) -> SplitExpense | None:
        """Load an expense with its lines.

        ``for_update`` locks the expense row until the surrounding transaction
        ends, so writers touching lines of the same expense run one at a time.
        """
        query = "SELECT * FROM split_expenses WHERE id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self.db.fetchrow(query, expense_id)
        if row is None:
            return None
        lines = await self.db.fetch(
            "SELECT * FROM expense_splits WHERE expense_id = $1 ORDER BY position",
            expense_id,
        )
        return _expense_from_row(row, [_line_from_row(line) for line in lines])

    async def list_unsettled_group_expenses(self, group_id: int) -> list[SplitExpense]:
        rows = await self.db.fetch(
            """
            SELECT * FROM split_expenses
            WHERE group_id = $1 AND is_settled = false
            ORDER BY created_at, id
            """,
            group_id,
        )
        return await self._with_lines(rows)

    async def list_unsettled_user_expenses(self, user_id: int) -> list[SplitExpense]:
        rows = await self.db.fetch(
            """
            SELECT * FROM split_expenses e
            WHERE e.is_settled = false
              AND (e.paid_by = $1
                   OR EXISTS (SELECT 1 FROM expense_splits s
                              WHERE s.expense_id = e.id AND s.participant_id = $1))
            ORDER BY e.created_at, e.id
            """,
            user_id,
        )
        return await self._with_lines(rows)

    async def list_user_expenses(self, user_id: int) -> list[SplitExpense]:
        rows = await self.db.fetch(
            """
            SELECT * FROM split_expenses e
            WHERE e.created_by = $1
               OR EXISTS (SELECT 1 FROM expense_splits s
                          WHERE s.expense_id = e.id AND s.participant_id = $1)
            ORDER BY e.created_at, e.id
            """,
            user_id,
        )
        return await self._with_lines(rows)

    async def mark_line_paid(self, expense_id: int, participant_id: int, paid_at: datetime) -> bool:
        status = await self.db.execute(
            """
            UPDATE expense_splits
            SET paid = true, paid_at = $3
            WHERE expense_id = $1 AND participant_id = $2 AND paid = false
            """,
            expense_id,
            participant_id,
            paid_at,
        )
        return _affected(status) == 1

    async def mark_expense_settled(self, expense_id: int, expected_version: int, settled_at: datetime) -> bool:
        status = await self.db.execute(
            """
            UPDATE split_expenses
            SET is_settled = true, settled_at = $3, version = version + 1
            WHERE id = $1
              AND version = $2
              AND is_settled = false
              AND NOT EXISTS (
                  SELECT 1 FROM expense_splits WHERE expense_id = $1 AND paid = false
              )
            """,
            expense_id,
            expected_version,
            settled_at,
        )
        return _affected(status) == 1

    async def insert_settlement(
        self,
        paid_by: int,
        paid_to: int,
        amount_cents: int,
        currency: str,
        group_id: Optional[int],
        related_expenses: Sequence[int],
        method: SettlementMethod,
        notes: Optional[str],
        status: SettlementStatus,
        settled_at: datetime,
    ) -> Settlement:
        row = await self.db.fetchrow(
            """
            INSERT INTO settlements
                (paid_by, paid_to, amount_cents, currency, group_id, method, notes, status, settled_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *, NULL::bigint[] AS related_expenses
            """,
            paid_by,
            paid_to,
            amount_cents,
            currency,
            group_id,
            method.value,
            notes,
            status.value,
            settled_at,
        )
        assert row is not None
        if related_expenses:
            await self.db.executemany(
                """
                INSERT INTO settlement_expenses (settlement_id, expense_id, position)
                VALUES ($1, $2, $3)
                ON CONFLICT DO NOTHING
                """,
                ((row["id"], expense_id, position) for position, expense_id in enumerate(related_expenses)),
            )
        settlement = _settlement_from_row(row)
        settlement.related_expenses = list(dict.fromkeys(related_expenses))
        return settlement

    async def record_applied_amount(self, settlement_id: int, expense_id: int, amount_cents: int) -> None:
        await self.db.execute(
            """
            UPDATE settlement_expenses
            SET applied_cents = $3
            WHERE settlement_id = $1 AND expense_id = $2
            """,
            settlement_id,
            expense_id,
            amount_cents,
        )

    async def mark_settlement_applied(self, settlement_id: int, applied_cents: int) -> None:
        await self.db.execute(
            "UPDATE settlements SET applied_cents = $2, is_applied = true WHERE id = $1",
            settlement_id,
            applied_cents,
        )

    async def get_settlement(self, settlement_id: int) -> Settlement | None:
        row = await self.db.fetchrow(
            _SETTLEMENT_SELECT + " WHERE s.id = $1 GROUP BY s.id",
            settlement_id,
        )
        return _settlement_from_row(row) if row is not None else None

    async def update_settlement_status(
        self,
        settlement_id: int,
        expected_version: int,
        status: SettlementStatus,
        notes: Optional[str],
        verified_by: Optional[int],
        verified_at: Optional[datetime],
    ) -> bool:
        result = await self.db.execute(
            """
            UPDATE settlements
            SET status = $3, notes = $4, verified_by = $5, verified_at = $6, version = version + 1
            WHERE id = $1 AND version = $2
            """,
            settlement_id,
            expected_version,
            status.value,
            notes,
            verified_by,
            verified_at,
        )
        return _affected(result) == 1

    async def list_open_group_settlements(self, group_id: int) -> list[Settlement]:
        rows = await self.db.fetch(
            _SETTLEMENT_SELECT
            + " WHERE s.group_id = $1 AND "
            + _OPEN_SETTLEMENT_FILTER
            + " GROUP BY s.id ORDER BY s.settled_at, s.id",
            group_id,
        )
        return [_settlement_from_row(row) for row in rows]

    async def list_open_user_settlements(self, user_id: int) -> list[Settlement]:
        rows = await self.db.fetch(
            _SETTLEMENT_SELECT
            + " WHERE (s.paid_by = $1 OR s.paid_to = $1) AND "
            + _OPEN_SETTLEMENT_FILTER
            + " GROUP BY s.id ORDER BY s.settled_at, s.id",
            user_id,
        )
        return [_settlement_from_row(row) for row in rows]

    async def settlement_summary(self, user_id: int, group_id: Optional[int] = None) -> SettlementSummary:
        row = await self.db.fetchrow(
            """
            SELECT COALESCE(SUM(amount_cents) FILTER (WHERE paid_by = $1), 0) AS total_paid,
                   COALESCE(SUM(amount_cents) FILTER (WHERE paid_to = $1), 0) AS total_received,
                   COUNT(*) AS count
            FROM settlements
            WHERE (paid_by = $1 OR paid_to = $1)
              AND status = 'verified'
              AND ($2::bigint IS NULL OR group_id = $2)
            """,
            user_id,
            group_id,
        )
        if row is None:
            return SettlementSummary()
        return SettlementSummary(
            total_paid=int(row["total_paid"]),
            total_received=int(row["total_received"]),
            count=int(row["count"]),
        )

    async def _with_lines(self, rows: Sequence[Mapping[str, Any]]) -> list[SplitExpense]:
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        line_rows = await self.db.fetch(
            """
            SELECT * FROM expense_splits
            WHERE expense_id = ANY($1::bigint[])
            ORDER BY expense_id, position
            """,
            ids,
        )
        by_expense: dict[int, list[SplitLine]] = {expense_id: [] for expense_id in ids}
        for line in line_rows:
            by_expense[line["expense_id"]].append(_line_from_row(line))
        return [_expense_from_row(row, by_expense[row["id"]]) for row in rows]
