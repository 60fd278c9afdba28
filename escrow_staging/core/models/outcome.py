"""
Reduce outcomes and job results (ephemeral, returned to the caller).
"""

from typing import Literal

from pydantic import BaseModel, Field

from .artifact import DepositArtifact
from .deposit import DepositKey

ReduceStatus = Literal["COMPLETED", "ALREADY_COMPLETED", "LOCKED", "FAILED"]


class ReduceOutcome(BaseModel):
    """
    Result of one reducer invocation.

    Attributes:
        key: Deposit that was reduced
        status: COMPLETED (cursor advanced), ALREADY_COMPLETED (duplicate),
            LOCKED (another reducer holds the lock), FAILED (invalid data)
        artifact: Staged artifact, when one was written
        error: Error message for FAILED outcomes
    """

    key: DepositKey
    status: ReduceStatus
    artifact: DepositArtifact | None = None
    error: str | None = None


class JobResult(BaseModel):
    """Aggregated outcome of a staging job."""

    job_id: str
    shards_mapped: int = 0
    snapshots_emitted: int = 0
    outcomes: list[ReduceOutcome] = Field(default_factory=list)

    def with_status(self, status: ReduceStatus) -> list[ReduceOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def completed(self) -> list[ReduceOutcome]:
        return self.with_status("COMPLETED")

    @property
    def failed(self) -> list[ReduceOutcome]:
        return self.with_status("FAILED")
