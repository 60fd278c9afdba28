"""
Deposit reducer.

Invoked once per deposit key with every snapshot mapped to it:

1. take the deposit's idempotency lock (skip without side effects if held);
2. render every snapshot, failing the whole deposit if any one is invalid;
3. encrypt and write the deposit and its report to their deterministic paths;
4. in one transaction, roll the cursor forward and enqueue the upload, unless
   a previous execution already rolled it;
5. release the lock.

The lock exists because tasks may be executed more than once and because an
artifact write may land even when the task later fails. Duplicates that get
past the lock are neutralised by the cursor compare-and-set.
"""

from functools import partial
from typing import Any, Iterable

from escrow_staging.core import naming
from escrow_staging.core.config import StagingConfig
from escrow_staging.core.errors import DepositValidationError, MarshalError
from escrow_staging.core.models import (
    DepositArtifact,
    DepositFragment,
    DepositKey,
    ReduceOutcome,
    ResourceSnapshot,
    UploadRequest,
)
from escrow_staging.observability import metrics
from escrow_staging.observability.logger import deposit_fields, get_logger, log_operation
from escrow_staging.warehouse.base import CursorStore, LockStore, UploadQueue

from .encryption import Encryptor
from .marshaller import DepositMarshaller
from .storage import ArtifactStorage

logger = get_logger(__name__)


class StagingReducer:
    """
    Stages one deposit and commits its completion.
    """

    def __init__(
        self,
        config: StagingConfig,
        cursors: CursorStore,
        locks: LockStore,
        uploads: UploadQueue,
        storage: ArtifactStorage,
        encryptor: Encryptor,
        marshaller: DepositMarshaller | None = None,
    ):
        self.config = config
        self.cursors = cursors
        self.locks = locks
        self.uploads = uploads
        self.storage = storage
        self.encryptor = encryptor
        self.marshaller = marshaller or DepositMarshaller()

    def reduce(self, key: DepositKey, snapshots: Iterable[ResourceSnapshot]) -> ReduceOutcome:
        """
        Stage a deposit and roll its cursor forward.

        Args:
            key: Deposit to stage
            snapshots: Every snapshot mapped to the deposit, in any order

        Returns:
            The outcome (COMPLETED, ALREADY_COMPLETED or LOCKED)

        Raises:
            DepositValidationError: If any snapshot is invalid; nothing is
                written and the cursor is untouched
        """
        fields = deposit_fields(key)
        lease = self.locks.acquire(key.lock_name, self.config.lock_timeout)
        if lease is None:
            logger.info("Deposit is locked by another worker, skipping", extra=fields)
            metrics.increment_counter(metrics.lock_contention_total)
            return ReduceOutcome(key=key, status="LOCKED")

        try:
            return self._reduce_with_lock(key, snapshots)
        finally:
            if not self.locks.release(lease):
                logger.warning("Deposit lock expired before release", extra=fields)

    def _reduce_with_lock(self, key: DepositKey, snapshots: Iterable[ResourceSnapshot]) -> ReduceOutcome:
        fields = deposit_fields(key)
        next_position = key.watermark + self.config.interval_for(key.mode)

        if self.cursors.get(key.tld, key.cursor_type) >= next_position:
            logger.info("Deposit was already completed, skipping", extra=fields)
            return ReduceOutcome(key=key, status="ALREADY_COMPLETED")

        with metrics.track_duration(metrics.reduce_duration_seconds, mode=key.mode.value):
            with log_operation("Staging deposit", logger=logger, **fields):
                artifact = self.stage(key, snapshots)

        advanced = self.cursors.try_advance(
            key.tld,
            key.cursor_type,
            key.watermark,
            next_position,
            on_advance=partial(self._enqueue_upload, key),
        )
        if not advanced:
            logger.info("Cursor already rolled forward by another execution", extra=fields)
            return ReduceOutcome(key=key, status="ALREADY_COMPLETED", artifact=artifact)

        logger.info(
            "Deposit staged and cursor rolled forward",
            extra={**fields, "next_watermark": next_position.isoformat(),
                   "fragments": sum(artifact.fragment_counts.values())},
        )
        return ReduceOutcome(key=key, status="COMPLETED", artifact=artifact)

    def _enqueue_upload(self, key: DepositKey, txn: Any) -> None:
        request = UploadRequest.for_deposit(key)
        self.uploads.enqueue(request, txn=txn)
        logger.info("Enqueued upload", extra={**deposit_fields(key), "task_type": request.task_type})

    def render(self, key: DepositKey, snapshots: Iterable[ResourceSnapshot]) -> list[DepositFragment]:
        """
        Render every snapshot of a deposit.

        All snapshots are attempted so every broken resource gets logged, then
        the deposit fails if any one was invalid.

        Raises:
            DepositValidationError: If any snapshot failed to render
        """
        fields = deposit_fields(key)
        # A resource mapped twice (retried map task) is rendered once
        unique = {(s.kind, s.resource_key): s for s in snapshots}

        fragments: list[DepositFragment] = []
        errors: list[MarshalError] = []
        for snapshot in unique.values():
            try:
                fragments.append(self.marshaller.marshal(snapshot, key.mode))
            except MarshalError as e:
                errors.append(e)
                logger.error(
                    "Resource is invalid for escrow",
                    extra={**fields, "resource_key": e.resource_key,
                           "error": str(e), "lenient": e.lenient},
                )

        if errors:
            raise DepositValidationError(str(key), errors)
        return fragments

    def stage(
        self,
        key: DepositKey,
        snapshots: Iterable[ResourceSnapshot],
        revision: int = naming.REVISION,
        prefix: str = "",
    ) -> DepositArtifact:
        """
        Render, encrypt and write a deposit and its report.

        Does not touch the cursor or the lock. Manual generation calls it with
        its own prefix and revision so pipeline artifacts are never replaced.

        Returns:
            Description of the written artifact
        """
        fragments = self.render(key, snapshots)
        deposit = self.marshaller.build_deposit(key, fragments, self.config.interval_for(key.mode))
        report = self.marshaller.build_report(key, fragments)

        deposit_path = naming.deposit_path(key, revision, prefix)
        report_path = naming.report_path(key, revision, prefix)
        self.storage.write(deposit_path, self.encryptor.encrypt(deposit))
        self.storage.write(report_path, self.encryptor.encrypt(report))
        metrics.observe_histogram(metrics.deposit_size_bytes, len(deposit), mode=key.mode.value)

        counts: dict[str, int] = {}
        for fragment in fragments:
            counts[fragment.kind.value] = counts.get(fragment.kind.value, 0) + 1

        return DepositArtifact(
            key=key,
            deposit_path=deposit_path,
            report_path=report_path,
            fragment_counts=counts,
            deposit_size=len(deposit),
        )
