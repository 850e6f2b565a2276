"""Persistence layer for ledger orders.

Expected table::

    CREATE TABLE orders (
        id TEXT PRIMARY KEY,
        order_number TEXT NOT NULL UNIQUE,
        user_id TEXT NOT NULL,
        product_id TEXT NOT NULL,
        product_name TEXT NOT NULL,
        product_type TEXT NOT NULL,
        amount NUMERIC(12, 2) NOT NULL,
        currency CHAR(3) NOT NULL,
        status TEXT NOT NULL,
        payment_provider TEXT NOT NULL,
        payment_request_id TEXT,
        payment_session_id TEXT,
        customer_email TEXT,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        paid_at TIMESTAMPTZ
    );
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import (
    InvalidOrderTransition,
    Order,
    OrderCreate,
    OrderStatus,
    format_amount,
    metadata_from_mapping,
    metadata_to_mapping,
    predecessors_of,
)
from ...app_context import get_conn


def new_order_number(now: Optional[datetime] = None) -> str:
    moment = now or datetime.now()
    return f"ORD{moment.strftime('%Y%m%d%H%M%S')}{uuid4().hex[:6].upper()}"


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_order(row: Mapping[str, Any]) -> Order:
    return Order(
        id=row["id"],
        order_number=row["order_number"],
        user_id=row["user_id"],
        product_id=row["product_id"],
        product_name=row["product_name"],
        product_type=row["product_type"],
        amount=format_amount(row["amount"]),
        currency=row["currency"],
        status=OrderStatus(row["status"]),
        payment_provider=row["payment_provider"],
        payment_request_id=row.get("payment_request_id"),
        payment_session_id=row.get("payment_session_id"),
        customer_email=row.get("customer_email"),
        metadata=metadata_from_mapping(row.get("metadata")),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        paid_at=row.get("paid_at"),
    )


class PostgresOrderLedger:
    """Concrete ledger persisting orders in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def create_order(self, order: OrderCreate) -> Order:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO orders (
                    id,
                    order_number,
                    user_id,
                    product_id,
                    product_name,
                    product_type,
                    amount,
                    currency,
                    status,
                    payment_provider,
                    payment_request_id,
                    payment_session_id,
                    customer_email,
                    metadata,
                    paid_at
                )
                VALUES (%(id)s, %(order_number)s, %(user_id)s, %(product_id)s, %(product_name)s,
                        %(product_type)s, %(amount)s, %(currency)s, %(status)s, %(payment_provider)s,
                        %(payment_request_id)s, %(payment_session_id)s, %(customer_email)s,
                        %(metadata)s, %(paid_at)s)
                RETURNING *
                """,
                {
                    "id": str(uuid4()),
                    "order_number": new_order_number(),
                    "user_id": order.user_id,
                    "product_id": order.product_id,
                    "product_name": order.product_name,
                    "product_type": order.product_type,
                    "amount": order.amount,
                    "currency": order.currency,
                    "status": order.status.value,
                    "payment_provider": order.payment_provider,
                    "payment_request_id": order.payment_request_id,
                    "payment_session_id": order.payment_session_id,
                    "customer_email": order.customer_email,
                    "metadata": psycopg2.extras.Json(metadata_to_mapping(order.metadata)),
                    "paid_at": order.paid_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist order")
            return _row_to_order(row)

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM orders
                WHERE id = %s
                LIMIT 1
                """,
                (order_id,),
            )
            row = cursor.fetchone()
            return _row_to_order(row) if row else None

    def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        payment_request_id: Optional[str] = None,
        payment_session_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> Order:
        allowed_from = [value.value for value in predecessors_of(status)]
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE orders
                SET status = %(status)s,
                    payment_request_id = COALESCE(%(payment_request_id)s, payment_request_id),
                    payment_session_id = COALESCE(%(payment_session_id)s, payment_session_id),
                    paid_at = COALESCE(%(paid_at)s, paid_at),
                    updated_at = NOW()
                WHERE id = %(order_id)s AND status = ANY(%(allowed_from)s)
                RETURNING *
                """,
                {
                    "status": status.value,
                    "payment_request_id": payment_request_id,
                    "payment_session_id": payment_session_id,
                    "paid_at": paid_at,
                    "order_id": order_id,
                    "allowed_from": allowed_from,
                },
            )
            row = cursor.fetchone()
            if row:
                return _row_to_order(row)

            cursor.execute("SELECT status FROM orders WHERE id = %s", (order_id,))
            current = cursor.fetchone()
            if not current:
                raise LookupError(f"Order {order_id} not found")
            raise InvalidOrderTransition(order_id, OrderStatus(current["status"]), status)

    def merge_order_metadata(self, order_id: str, partial: Mapping[str, Any]) -> Order:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE orders
                SET metadata = COALESCE(metadata, '{}'::jsonb) || %s::jsonb,
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (psycopg2.extras.Json(dict(partial)), order_id),
            )
            row = cursor.fetchone()
            if not row:
                raise LookupError(f"Order {order_id} not found")
            return _row_to_order(row)

    def has_paid_order(self, user_id: str, product_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT 1
                FROM orders
                WHERE user_id = %s AND product_id = %s AND status = %s
                LIMIT 1
                """,
                (user_id, product_id, OrderStatus.PAID.value),
            )
            return cursor.fetchone() is not None

    def list_orders_for_product(self, user_id: str, product_id: str) -> List[Order]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM orders
                WHERE user_id = %s AND product_id = %s
                ORDER BY created_at DESC
                """,
                (user_id, product_id),
            )
            rows = cursor.fetchall() or []
            return [_row_to_order(row) for row in rows]

    def list_orders(
        self,
        user_id: str,
        *,
        limit: int = 10,
        offset: int = 0,
        statuses: Sequence[OrderStatus] = (),
    ) -> Tuple[List[Order], int]:
        clauses = ["user_id = %(user_id)s"]
        params: dict = {"user_id": user_id, "limit": limit, "offset": offset}
        if statuses:
            clauses.append("status = ANY(%(statuses)s)")
            params["statuses"] = [status.value for status in statuses]
        where = " AND ".join(clauses)

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM orders
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT %(limit)s OFFSET %(offset)s
                """,
                params,
            )
            rows = cursor.fetchall() or []
            cursor.execute(f"SELECT COUNT(*) AS total FROM orders WHERE {where}", params)
            total_row = cursor.fetchone() or {"total": 0}
            return [_row_to_order(row) for row in rows], int(total_row["total"])


__all__ = ["PostgresOrderLedger", "managed_connection", "new_order_number"]
