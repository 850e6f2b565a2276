"""PostgreSQL token balance storage.

Expected tables::

    CREATE TABLE token_balances (
        user_id TEXT PRIMARY KEY,
        balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );

    CREATE TABLE token_ledger (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        delta INTEGER NOT NULL,
        reason TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..billing.repository import managed_connection


class PostgresTokenBalanceStore:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, _managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

    def get_balance(self, user_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT balance FROM token_balances WHERE user_id = %s", (user_id,))
            row = cursor.fetchone()
            return int(row["balance"]) if row else 0

    def try_debit(self, user_id: str, amount: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE token_balances
                SET balance = balance - %(amount)s,
                    updated_at = NOW()
                WHERE user_id = %(user_id)s AND balance >= %(amount)s
                RETURNING balance
                """,
                {"user_id": user_id, "amount": amount},
            )
            if cursor.fetchone() is None:
                return False
            cursor.execute(
                "INSERT INTO token_ledger (user_id, delta, reason) VALUES (%s, %s, %s)",
                (user_id, -amount, "debit"),
            )
            return True

    def credit(self, user_id: str, amount: int, reason: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO token_balances (user_id, balance)
                VALUES (%(user_id)s, %(amount)s)
                ON CONFLICT (user_id)
                DO UPDATE SET balance = token_balances.balance + EXCLUDED.balance,
                              updated_at = NOW()
                """,
                {"user_id": user_id, "amount": amount},
            )
            cursor.execute(
                "INSERT INTO token_ledger (user_id, delta, reason) VALUES (%s, %s, %s)",
                (user_id, amount, reason),
            )


__all__ = ["PostgresTokenBalanceStore"]
