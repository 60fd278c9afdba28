"""
PostgreSQL cursor store.

The cursor row is the only durable statement of which deposits are done.
``try_advance`` is the compare-and-set that keeps duplicate reduce executions
from advancing a cursor twice or enqueuing an upload twice.
"""

from datetime import datetime
from typing import Iterable

from escrow_staging.core.errors import CursorConflictError
from escrow_staging.core.models import Cursor, CursorType
from escrow_staging.observability.logger import get_logger

from .base import AdvanceCallback, CursorStore
from .connection import DatabaseConnectionPool

logger = get_logger(__name__)


class PostgresCursorStore(CursorStore):
    """
    Cursor store backed by the ``escrow_cursor`` table.
    """

    def __init__(self, pool: DatabaseConnectionPool, epoch: datetime):
        """
        Args:
            pool: Database connection pool
            epoch: Position reported for cursors that were never written
        """
        self.pool = pool
        self.epoch = epoch

    def get(self, tld: str, cursor_type: CursorType) -> datetime:
        cursor = self.get_cursor(tld, cursor_type)
        return cursor.position if cursor else self.epoch

    def get_cursor(self, tld: str, cursor_type: CursorType) -> Cursor | None:
        rows = self.pool.execute_query(
            """
            SELECT tld, cursor_type, position, updated_at
            FROM escrow_cursor
            WHERE tld = %s AND cursor_type = %s
            """,
            (tld, cursor_type.value),
        )
        return Cursor(**rows[0]) if rows else None

    def list_cursors(self, tlds: Iterable[str] | None = None) -> list[Cursor]:
        if tlds is None:
            rows = self.pool.execute_query(
                "SELECT tld, cursor_type, position, updated_at FROM escrow_cursor ORDER BY tld, cursor_type"
            )
        else:
            rows = self.pool.execute_query(
                """
                SELECT tld, cursor_type, position, updated_at
                FROM escrow_cursor
                WHERE tld = ANY(%s)
                ORDER BY tld, cursor_type
                """,
                (list(tlds),),
            )
        return [Cursor(**row) for row in rows]

    def try_advance(
        self,
        tld: str,
        cursor_type: CursorType,
        from_not_before: datetime,
        to: datetime,
        on_advance: AdvanceCallback | None = None,
    ) -> bool:
        with self.pool.transaction() as conn:
            with conn.cursor() as cur:
                # Materialize the row first so FOR UPDATE always has something to lock
                cur.execute(
                    """
                    INSERT INTO escrow_cursor (tld, cursor_type, position)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (tld, cursor_type) DO NOTHING
                    """,
                    (tld, cursor_type.value, self.epoch),
                )
                cur.execute(
                    """
                    SELECT position FROM escrow_cursor
                    WHERE tld = %s AND cursor_type = %s
                    FOR UPDATE
                    """,
                    (tld, cursor_type.value),
                )
                current = cur.fetchone()["position"]

                if current >= to:
                    logger.info(
                        "Cursor has already been rolled forward",
                        extra={"tld": tld, "cursor_type": cursor_type.value,
                               "position": current.isoformat(), "target": to.isoformat()},
                    )
                    return False

                if current < from_not_before:
                    logger.warning(
                        "Cursor is behind the deposit being completed; not advancing",
                        extra={"tld": tld, "cursor_type": cursor_type.value,
                               "position": current.isoformat(),
                               "watermark": from_not_before.isoformat()},
                    )
                    return False

                cur.execute(
                    """
                    UPDATE escrow_cursor
                    SET position = %s, updated_at = now()
                    WHERE tld = %s AND cursor_type = %s
                    """,
                    (to, tld, cursor_type.value),
                )
                if on_advance is not None:
                    on_advance(conn)

        logger.info(
            "Rolled forward cursor",
            extra={"tld": tld, "cursor_type": cursor_type.value,
                   "from": from_not_before.isoformat(), "to": to.isoformat()},
        )
        return True

    def set(self, tld: str, cursor_type: CursorType, position: datetime, force: bool = False) -> Cursor:
        with self.pool.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT position FROM escrow_cursor
                    WHERE tld = %s AND cursor_type = %s
                    FOR UPDATE
                    """,
                    (tld, cursor_type.value),
                )
                row = cur.fetchone()
                if row and position < row["position"] and not force:
                    raise CursorConflictError(
                        f"Refusing to move {cursor_type.value} cursor for {tld} back "
                        f"from {row['position'].isoformat()} to {position.isoformat()}"
                    )
                cur.execute(
                    """
                    INSERT INTO escrow_cursor (tld, cursor_type, position, updated_at)
                    VALUES (%s, %s, %s, now())
                    ON CONFLICT (tld, cursor_type) DO UPDATE SET
                        position = EXCLUDED.position,
                        updated_at = EXCLUDED.updated_at
                    RETURNING tld, cursor_type, position, updated_at
                    """,
                    (tld, cursor_type.value, position),
                )
                return Cursor(**cur.fetchone())
