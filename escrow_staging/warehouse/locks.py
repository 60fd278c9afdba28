"""
Idempotency locks as conditional writes with expiry.

A lock is a row in ``deposit_lock``. Acquisition is one upsert that only
overwrites an existing row once it has expired, so concurrent acquirers from
independent processes get a single winner and a crashed holder cannot wedge a
deposit for longer than the lease.
"""

import uuid
from datetime import timedelta

from escrow_staging.core.clock import Clock, SystemClock
from escrow_staging.core.models import LockLease

from .base import LockStore
from .connection import DatabaseConnectionPool


class PostgresLockStore(LockStore):
    """
    Lock store backed by the ``deposit_lock`` table.
    """

    def __init__(self, pool: DatabaseConnectionPool, clock: Clock | None = None):
        self.pool = pool
        self.clock = clock or SystemClock()

    def acquire(self, name: str, ttl: timedelta) -> LockLease | None:
        now = self.clock.now_utc()
        owner = uuid.uuid4().hex
        rows = self.pool.execute_query(
            """
            INSERT INTO deposit_lock (lock_name, owner, acquired_at, expires_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (lock_name) DO UPDATE SET
                owner = EXCLUDED.owner,
                acquired_at = EXCLUDED.acquired_at,
                expires_at = EXCLUDED.expires_at
            WHERE deposit_lock.expires_at <= EXCLUDED.acquired_at
            RETURNING lock_name, owner, acquired_at, expires_at
            """,
            (name, owner, now, now + ttl),
        )
        if not rows:
            return None
        row = rows[0]
        return LockLease(
            name=row["lock_name"],
            owner=row["owner"],
            acquired_at=row["acquired_at"],
            expires_at=row["expires_at"],
        )

    def release(self, lease: LockLease) -> bool:
        rowcount = self.pool.execute_command(
            "DELETE FROM deposit_lock WHERE lock_name = %s AND owner = %s",
            (lease.name, lease.owner),
        )
        return rowcount > 0
