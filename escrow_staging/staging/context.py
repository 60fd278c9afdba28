"""
Explicit wiring of the pipeline's collaborators.

``StagingContext`` is the set of handles every task needs. ``build_context``
creates the PostgreSQL-backed set from a ``StagingConfig``; remote workers
call it again inside each partition because open pools cannot be shipped.
"""

from dataclasses import dataclass
from functools import partial
from typing import Callable

from escrow_staging.core.clock import Clock, SystemClock
from escrow_staging.core.config import StagingConfig
from escrow_staging.warehouse.base import CursorStore, LockStore, ResourceStore, UploadQueue
from escrow_staging.warehouse.connection import DatabaseConnectionPool
from escrow_staging.warehouse.cursors import PostgresCursorStore
from escrow_staging.warehouse.locks import PostgresLockStore
from escrow_staging.warehouse.resources import PostgresResourceStore
from escrow_staging.warehouse.upload_queue import PostgresUploadQueue

from .encryption import Encryptor, FernetEncryptor
from .reducer import StagingReducer
from .storage import ArtifactStorage, LocalArtifactStorage


@dataclass
class StagingContext:
    """
    Collaborator handles shared by the checker, mapper and reducer.
    """

    config: StagingConfig
    clock: Clock
    resources: ResourceStore
    cursors: CursorStore
    locks: LockStore
    uploads: UploadQueue
    storage: ArtifactStorage
    encryptor: Encryptor
    on_close: Callable[[], None] | None = None

    def reducer(self) -> StagingReducer:
        return StagingReducer(
            config=self.config,
            cursors=self.cursors,
            locks=self.locks,
            uploads=self.uploads,
            storage=self.storage,
            encryptor=self.encryptor,
        )

    def close(self) -> None:
        if self.on_close is not None:
            self.on_close()
            self.on_close = None


ContextFactory = Callable[[], StagingContext]


def build_context(config: StagingConfig, clock: Clock | None = None) -> StagingContext:
    """
    Build the PostgreSQL-backed context for a configuration.

    Args:
        config: Staging configuration
        clock: Clock override (defaults to the system clock)

    Returns:
        Context owning an open connection pool; call ``close()`` when done
    """
    clock = clock or SystemClock()
    encryptor = FernetEncryptor(config.encryption_key)
    pool = DatabaseConnectionPool(**config.database.pool_kwargs())
    pool.open()

    return StagingContext(
        config=config,
        clock=clock,
        resources=PostgresResourceStore(pool, num_shards=config.num_shards),
        cursors=PostgresCursorStore(pool, epoch=config.cursor_epoch),
        locks=PostgresLockStore(pool, clock=clock),
        uploads=PostgresUploadQueue(pool),
        storage=LocalArtifactStorage(config.artifact_root),
        encryptor=encryptor,
        on_close=pool.close,
    )


def context_factory(config: StagingConfig) -> ContextFactory:
    """Picklable factory rebuilding the context from configuration."""
    return partial(build_context, config)
