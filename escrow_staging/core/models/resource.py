"""
Resource models: index references, revision log entries and point-in-time snapshots.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class ResourceKind(str, Enum):
    """Kinds of registry entities that end up in deposits."""

    DOMAIN = "domain"
    CONTACT = "contact"
    HOST = "host"
    REGISTRAR = "registrar"


class ResourceRef(BaseModel):
    """
    Identity of an indexed resource.

    Attributes:
        kind: Resource kind
        resource_key: Repository object id, unique across kinds
        tld: Owning TLD (domains only)
    """

    kind: ResourceKind
    resource_key: str = Field(..., min_length=1)
    tld: str | None = None

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_tld(self) -> "ResourceRef":
        """Domains carry their TLD, nothing else does."""
        if self.kind == ResourceKind.DOMAIN and not self.tld:
            raise ValueError("domain references require a tld")
        if self.kind != ResourceKind.DOMAIN and self.tld is not None:
            raise ValueError(f"{self.kind.value} references must not carry a tld")
        return self


class ResourceRevision(BaseModel):
    """
    One entry of a resource's append-only revision log.

    Attributes:
        resource_key: Resource the revision belongs to
        commit_time: Transaction time of the revision
        data: Full field values after the commit
        deleted: Whether this revision deleted the resource
    """

    resource_key: str
    commit_time: datetime
    data: dict[str, Any] = Field(default_factory=dict)
    deleted: bool = False


class ResourceSnapshot(BaseModel):
    """
    Immutable view of a resource as of a watermark.

    ``revision_time`` is None for registrars, which are never rewound.
    """

    ref: ResourceRef
    watermark: datetime
    revision_time: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    @property
    def kind(self) -> ResourceKind:
        return self.ref.kind

    @property
    def resource_key(self) -> str:
        return self.ref.resource_key
