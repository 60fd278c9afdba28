"""
Shard-parallel mapper.

One map task runs per resource index shard, plus one task for the null shard
that emits registrars. Each task rewinds every resource it owns to the
watermarks of the deposits it belongs in:

* domains go into the FULL and THIN deposits of their own TLD;
* contacts and hosts go into every FULL deposit on every TLD, whether or not
  a domain references them, and never into THIN deposits;
* registrars, active and inactive, go into every deposit. They are not
  sharded by the index, so the null shard emits them, which also guarantees
  that step runs exactly once even when the index is empty.
"""

from collections import defaultdict
from typing import Iterable, Iterator

from escrow_staging.core.models import (
    DepositKey,
    DepositMode,
    PendingDeposit,
    ResourceKind,
    ResourceRef,
    ResourceSnapshot,
)
from escrow_staging.warehouse.base import ResourceStore

from .point_in_time import PointInTimeReader

NULL_SHARD = -1

MappedPair = tuple[DepositKey, ResourceSnapshot]


class StagingMapper:
    """
    Maps resources to the deposits they appear in.

    Holds only the (immutable) pending deposits, so it can be shipped to
    remote workers.
    """

    def __init__(self, pending: Iterable[PendingDeposit]):
        self.pending = sorted(set(pending), key=lambda p: p.key().as_tuple())
        self.by_tld: dict[str, list[PendingDeposit]] = defaultdict(list)
        for deposit in self.pending:
            self.by_tld[deposit.tld].append(deposit)
        self.full = [p for p in self.pending if p.mode == DepositMode.FULL]

    def deposits_for(self, ref: ResourceRef) -> list[PendingDeposit]:
        """Return the pending deposits a resource belongs in."""
        if ref.kind == ResourceKind.DOMAIN:
            return self.by_tld.get(ref.tld, [])
        if ref.kind in (ResourceKind.CONTACT, ResourceKind.HOST):
            return self.full
        return []

    def map_shard(self, shard: int, store: ResourceStore, reader: PointInTimeReader) -> Iterator[MappedPair]:
        """
        Emit (deposit key, snapshot) pairs for every resource of a shard.

        Args:
            shard: Index shard id, or NULL_SHARD for registrars
            store: Resource store to enumerate the shard from
            reader: Point-in-time reader owned by this task
        """
        if shard == NULL_SHARD:
            yield from self.map_registrars(reader)
            return
        for ref in store.iter_shard(shard):
            yield from self.map_resource(ref, reader)

    def map_resource(self, ref: ResourceRef, reader: PointInTimeReader) -> Iterator[MappedPair]:
        deposits = self.deposits_for(ref)
        if not deposits:
            return

        snapshots = {
            watermark: reader.read_as_of(ref, watermark)
            for watermark in {d.watermark for d in deposits}
        }
        for deposit in deposits:
            snapshot = snapshots[deposit.watermark]
            if snapshot is None:
                continue
            yield deposit.key(), snapshot

    def map_registrars(self, reader: PointInTimeReader) -> Iterator[MappedPair]:
        snapshots = {
            watermark: reader.read_registrars(watermark)
            for watermark in {d.watermark for d in self.pending}
        }
        for deposit in self.pending:
            for snapshot in snapshots[deposit.watermark]:
                yield deposit.key(), snapshot
