"""
Point-in-time resource reads.

Each resource carries an append-only revision log keyed by commit time. The
state of a resource at a watermark is the latest revision committed at or
before the watermark; a resource whose latest such revision is a deletion
(or that has no such revision) did not exist at that instant.

Registrars have no revision history and are always read as current. Deleting
a registrar while deposits are being staged therefore breaks referential
correctness of the affected deposits, so registrars must never be deleted.
"""

from bisect import bisect_right
from datetime import datetime

from escrow_staging.core.models import (
    ResourceKind,
    ResourceRef,
    ResourceRevision,
    ResourceSnapshot,
)
from escrow_staging.warehouse.base import ResourceStore


class PointInTimeReader:
    """
    Reads resources as of a watermark.

    One reader is created per map task. It keeps the revision log of the most
    recently read resource, so reading one resource at several watermarks
    costs a single store round trip.
    """

    def __init__(self, store: ResourceStore):
        self.store = store
        self._cached_key: str | None = None
        self._cached_revisions: list[ResourceRevision] = []
        self._cached_times: list[datetime] = []
        self._registrars: list[dict] | None = None

    def _revisions(self, ref: ResourceRef) -> tuple[list[ResourceRevision], list[datetime]]:
        if ref.resource_key != self._cached_key:
            revisions = sorted(self.store.load_revisions(ref), key=lambda r: r.commit_time)
            self._cached_key = ref.resource_key
            self._cached_revisions = revisions
            self._cached_times = [r.commit_time for r in revisions]
        return self._cached_revisions, self._cached_times

    def read_as_of(self, ref: ResourceRef, watermark: datetime) -> ResourceSnapshot | None:
        """
        Return a resource's state as of a watermark.

        Args:
            ref: Resource identity
            watermark: Instant to rewind to

        Returns:
            The snapshot, or None if the resource did not exist at ``watermark``
        """
        if ref.kind == ResourceKind.REGISTRAR:
            raise ValueError("registrars are not versioned; use read_registrars()")

        revisions, times = self._revisions(ref)
        idx = bisect_right(times, watermark)
        if idx == 0:
            return None

        revision = revisions[idx - 1]
        if revision.deleted:
            return None

        return ResourceSnapshot(
            ref=ref,
            watermark=watermark,
            revision_time=revision.commit_time,
            data=revision.data,
        )

    def read_registrars(self, watermark: datetime) -> list[ResourceSnapshot]:
        """
        Return every registrar, active or not, in its current state.

        The snapshots are stamped with ``watermark`` but are never rewound.
        """
        if self._registrars is None:
            self._registrars = self.store.load_registrars()

        return [
            ResourceSnapshot(
                ref=ResourceRef(kind=ResourceKind.REGISTRAR, resource_key=str(registrar["registrar_id"])),
                watermark=watermark,
                data=registrar,
            )
            for registrar in self._registrars
        ]
