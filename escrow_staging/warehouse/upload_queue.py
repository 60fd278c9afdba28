"""
Upload task queue stored in the ``upload_task`` table.

Enqueues normally join the cursor transaction of the reducer that completed
the deposit, so the upload exists if and only if the cursor moved.
"""

from typing import Any

from escrow_staging.core.models import UploadRequest

from .base import UploadQueue
from .connection import DatabaseConnectionPool

INSERT_TASK = """
    INSERT INTO upload_task (task_type, tld, mode, watermark)
    VALUES (%s, %s, %s, %s)
    ON CONFLICT (tld, mode, watermark) DO NOTHING
"""


class PostgresUploadQueue(UploadQueue):
    """
    Upload queue over the ``upload_task`` table.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def enqueue(self, request: UploadRequest, txn: Any = None) -> None:
        params = (request.task_type, request.tld, request.mode.value, request.watermark)
        if txn is None:
            self.pool.execute_command(INSERT_TASK, params)
            return
        with txn.cursor() as cur:
            cur.execute(INSERT_TASK, params)

    def pending_tasks(self) -> list[UploadRequest]:
        rows = self.pool.execute_query(
            "SELECT task_type, tld, mode, watermark FROM upload_task ORDER BY task_id"
        )
        return [UploadRequest(**row) for row in rows]
