"""
Manual deposit generation for operators.

Stages a single deposit in-process without taking the lock or touching the
cursor, e.g. to inspect what a deposit for a past watermark would contain.
Output goes under ``manual/`` with the next unused revision, so a staged
deposit that is already queued for upload is never replaced.
"""

from datetime import datetime

from escrow_staging.core import naming
from escrow_staging.core.models import DepositArtifact, DepositKey, DepositMode, PendingDeposit
from escrow_staging.observability.logger import deposit_fields, get_logger

from .context import StagingContext
from .mapper import NULL_SHARD, StagingMapper
from .point_in_time import PointInTimeReader
from .storage import ArtifactStorage

logger = get_logger(__name__)


def next_manual_revision(storage: ArtifactStorage, key: DepositKey) -> int:
    """Return the lowest revision with no manual deposit written for ``key``."""
    revision = naming.REVISION
    while storage.exists(naming.deposit_path(key, revision, naming.MANUAL_PREFIX)):
        revision += 1
    return revision


def generate_deposit(context: StagingContext, tld: str, mode: DepositMode, watermark: datetime) -> DepositArtifact:
    """
    Generate one deposit sequentially and write it to artifact storage.

    Raises:
        DepositValidationError: If any resource fails to render
    """
    deposit = PendingDeposit(tld=tld, mode=mode, watermark=watermark)
    mapper = StagingMapper([deposit])
    reader = PointInTimeReader(context.resources)

    snapshots = []
    for shard in [NULL_SHARD] + context.resources.list_shards():
        snapshots.extend(snapshot for _, snapshot in mapper.map_shard(shard, context.resources, reader))

    key = deposit.key()
    revision = next_manual_revision(context.storage, key)
    logger.info(
        "Generating deposit manually",
        extra={**deposit_fields(deposit), "snapshots": len(snapshots), "revision": revision},
    )
    return context.reducer().stage(key, snapshots, revision=revision, prefix=naming.MANUAL_PREFIX)
