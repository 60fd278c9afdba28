"""
Deposit output models: marshalled fragments, staged artifacts, upload requests
and lock leases.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .deposit import DepositKey, DepositMode, require_utc
from .resource import ResourceKind


class DepositFragment(BaseModel):
    """
    XML rendering of one snapshot inside a deposit.

    Attributes:
        kind: Resource kind of the fragment
        resource_key: Resource the fragment was built from
        xml: Serialized element
    """

    kind: ResourceKind
    resource_key: str
    xml: str


class DepositArtifact(BaseModel):
    """
    A staged, encrypted deposit and its report.

    Attributes:
        key: Deposit the artifact belongs to
        deposit_path: Storage path of the encrypted deposit document
        report_path: Storage path of the encrypted report
        fragment_counts: Number of fragments per resource kind
        deposit_size: Size in bytes of the plaintext deposit document
    """

    key: DepositKey
    deposit_path: str
    report_path: str
    fragment_counts: dict[str, int] = Field(default_factory=dict)
    deposit_size: int = 0


class UploadRequest(BaseModel):
    """
    Follow-on transfer task for a completed deposit.

    FULL deposits are uploaded to the escrow agent; THIN deposits are copied
    to the BRDA bucket.
    """

    tld: str
    mode: DepositMode
    watermark: datetime
    task_type: str

    @field_validator("watermark")
    @classmethod
    def check_watermark(cls, v: datetime) -> datetime:
        return require_utc(v)

    @classmethod
    def for_deposit(cls, key: DepositKey) -> "UploadRequest":
        task_type = "rde-upload" if key.mode == DepositMode.FULL else "brda-copy"
        return cls(tld=key.tld, mode=key.mode, watermark=key.watermark, task_type=task_type)


class LockLease(BaseModel):
    """An acquired idempotency lock. Only the owner token may release it."""

    name: str
    owner: str
    acquired_at: datetime
    expires_at: datetime
