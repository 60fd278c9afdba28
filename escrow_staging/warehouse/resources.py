"""
PostgreSQL resource store: sharded resource index plus per-resource revision logs.

Every EPP resource (domain, contact, host) has one ``resource_index`` row
assigning it to a shard and an append-only ``resource_revision`` log keyed by
commit time. Registrars have no history and are stored as current state only.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Iterator

from escrow_staging.core.models import ResourceKind, ResourceRef, ResourceRevision

from .base import ResourceStore
from .connection import DatabaseConnectionPool


def shard_for(resource_key: str, num_shards: int) -> int:
    """Stable shard assignment for a resource key."""
    digest = hashlib.md5(resource_key.encode()).hexdigest()
    return int(digest, 16) % num_shards


class PostgresResourceStore(ResourceStore):
    """
    Resource store over the ``resource_index``, ``resource_revision`` and
    ``registrar`` tables.
    """

    def __init__(self, pool: DatabaseConnectionPool, num_shards: int, page_size: int = 500):
        """
        Args:
            pool: Database connection pool
            num_shards: Number of index shards
            page_size: Rows fetched per round trip when iterating a shard
        """
        self.pool = pool
        self.num_shards = num_shards
        self.page_size = page_size

    def list_shards(self) -> list[int]:
        return list(range(self.num_shards))

    def iter_shard(self, shard: int) -> Iterator[ResourceRef]:
        last_key = ""
        while True:
            rows = self.pool.execute_query(
                """
                SELECT resource_key, kind, tld
                FROM resource_index
                WHERE shard = %s AND resource_key > %s
                ORDER BY resource_key
                LIMIT %s
                """,
                (shard, last_key, self.page_size),
            )
            for row in rows:
                yield ResourceRef(
                    kind=ResourceKind(row["kind"]),
                    resource_key=row["resource_key"],
                    tld=row["tld"],
                )
            if len(rows) < self.page_size:
                return
            last_key = rows[-1]["resource_key"]

    def load_revisions(self, ref: ResourceRef) -> list[ResourceRevision]:
        rows = self.pool.execute_query(
            """
            SELECT resource_key, commit_time, deleted, data
            FROM resource_revision
            WHERE resource_key = %s
            ORDER BY commit_time
            """,
            (ref.resource_key,),
        )
        return [ResourceRevision(**row) for row in rows]

    def load_registrars(self) -> list[dict[str, Any]]:
        rows = self.pool.execute_query(
            "SELECT registrar_id, data FROM registrar ORDER BY registrar_id"
        )
        return [{"registrar_id": row["registrar_id"], **row["data"]} for row in rows]

    def save_revision(
        self,
        ref: ResourceRef,
        commit_time: datetime,
        data: dict[str, Any],
        deleted: bool = False,
    ) -> None:
        """
        Append a revision to a resource's log, indexing the resource if new.

        Args:
            ref: Resource identity
            commit_time: Transaction time of the revision
            data: Full field values after the commit
            deleted: Whether this revision deletes the resource
        """
        with self.pool.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO resource_index (resource_key, kind, tld, shard)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (resource_key) DO NOTHING
                    """,
                    (ref.resource_key, ref.kind.value, ref.tld,
                     shard_for(ref.resource_key, self.num_shards)),
                )
                cur.execute(
                    """
                    INSERT INTO resource_revision (resource_key, commit_time, deleted, data)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (resource_key, commit_time) DO UPDATE SET
                        deleted = EXCLUDED.deleted,
                        data = EXCLUDED.data
                    """,
                    (ref.resource_key, commit_time, deleted, json.dumps(data)),
                )

    def save_registrar(self, registrar_id: str, data: dict[str, Any]) -> None:
        """Insert or replace a registrar's current state."""
        self.pool.execute_command(
            """
            INSERT INTO registrar (registrar_id, data, updated_at)
            VALUES (%s, %s, now())
            ON CONFLICT (registrar_id) DO UPDATE SET
                data = EXCLUDED.data,
                updated_at = EXCLUDED.updated_at
            """,
            (registrar_id, json.dumps(data)),
        )
