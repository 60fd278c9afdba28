"""
Core data models for the escrow staging pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .artifact import DepositArtifact, DepositFragment, LockLease, UploadRequest
from .cursor import Cursor
from .deposit import (
    CursorType,
    DepositKey,
    DepositMode,
    PendingDeposit,
    cursor_type_for,
    mode_for,
)
from .outcome import JobResult, ReduceOutcome
from .resource import ResourceKind, ResourceRef, ResourceRevision, ResourceSnapshot

__all__ = [
    "CursorType",
    "DepositMode",
    "DepositKey",
    "PendingDeposit",
    "cursor_type_for",
    "mode_for",
    "Cursor",
    "ResourceKind",
    "ResourceRef",
    "ResourceRevision",
    "ResourceSnapshot",
    "DepositFragment",
    "DepositArtifact",
    "UploadRequest",
    "LockLease",
    "ReduceOutcome",
    "JobResult",
]
