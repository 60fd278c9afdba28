"""
Contracts of the collaborators the staging pipeline consumes.

Implementations must be safe to use from several worker threads or
processes at once.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Iterator

from escrow_staging.core.models import (
    Cursor,
    CursorType,
    LockLease,
    ResourceRef,
    ResourceRevision,
    UploadRequest,
)

# Called inside the cursor transaction with the store's transaction handle.
AdvanceCallback = Callable[[Any], None]


class CursorStore(ABC):
    """
    Per-(tld, cursor type) watermark with transactional compare-and-advance.
    """

    @abstractmethod
    def get(self, tld: str, cursor_type: CursorType) -> datetime:
        """
        Read a cursor position.

        Returns:
            The stored position, or the configured epoch if the cursor was
            never written
        """

    @abstractmethod
    def get_cursor(self, tld: str, cursor_type: CursorType) -> Cursor | None:
        """Read the stored cursor row, if any."""

    @abstractmethod
    def list_cursors(self, tlds: Iterable[str] | None = None) -> list[Cursor]:
        """List stored cursors, optionally restricted to some TLDs."""

    @abstractmethod
    def try_advance(
        self,
        tld: str,
        cursor_type: CursorType,
        from_not_before: datetime,
        to: datetime,
        on_advance: AdvanceCallback | None = None,
    ) -> bool:
        """
        Atomically move a cursor forward to ``to``.

        Inside one transaction: if the current position is already ``>= to``
        nothing happens and False is returned. If the current position is
        below ``from_not_before`` (an operator rewound the cursor beneath the
        deposit) nothing happens and False is returned. Otherwise the position
        becomes ``to``, ``on_advance`` runs inside the same transaction and
        True is returned. If ``on_advance`` raises, the advance is rolled back.

        Args:
            tld: Top-level domain
            cursor_type: Cursor to advance
            from_not_before: Watermark of the deposit being completed
            to: New position
            on_advance: Work to commit together with the advance

        Returns:
            True if this call advanced the cursor
        """

    @abstractmethod
    def set(self, tld: str, cursor_type: CursorType, position: datetime, force: bool = False) -> Cursor:
        """
        Overwrite a cursor (operator command).

        Raises:
            CursorConflictError: If the cursor would move backwards without ``force``
        """


class LockStore(ABC):
    """Named leases with expiry; a single winner among concurrent acquirers."""

    @abstractmethod
    def acquire(self, name: str, ttl: timedelta) -> LockLease | None:
        """
        Try to take a lock.

        Returns:
            The lease, or None if an unexpired lease is held by someone else
        """

    @abstractmethod
    def release(self, lease: LockLease) -> bool:
        """
        Release a lease if it is still owned by the caller.

        Returns:
            True if the lock row was removed
        """


class ResourceStore(ABC):
    """Sharded, versioned entity index (read-only from the pipeline's view)."""

    @abstractmethod
    def list_shards(self) -> list[int]:
        """Return every shard id of the resource index."""

    @abstractmethod
    def iter_shard(self, shard: int) -> Iterator[ResourceRef]:
        """Yield the identity of every resource in a shard."""

    @abstractmethod
    def load_revisions(self, ref: ResourceRef) -> list[ResourceRevision]:
        """Return a resource's revision log sorted by commit time."""

    @abstractmethod
    def load_registrars(self) -> list[dict[str, Any]]:
        """Return the current state of every registrar, active or not."""


class UploadQueue(ABC):
    """Queue of follow-on transfer tasks."""

    @abstractmethod
    def enqueue(self, request: UploadRequest, txn: Any = None) -> None:
        """
        Enqueue an upload.

        Args:
            request: Deposit to transfer
            txn: Transaction handle of a cursor advance to join; when None
                the enqueue commits on its own
        """

    @abstractmethod
    def pending_tasks(self) -> list[UploadRequest]:
        """List enqueued tasks."""
