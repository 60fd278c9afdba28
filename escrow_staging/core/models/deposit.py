"""
Deposit identity models: modes, cursor types, pending deposits and deposit keys.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class DepositMode(str, Enum):
    """Escrow deposit mode. FULL deposits are thick (RDE), THIN deposits are BRDA."""

    FULL = "FULL"
    THIN = "THIN"

    @property
    def filename_component(self) -> str:
        return self.value.lower()


class CursorType(str, Enum):
    """Cursor purposes tracked per TLD."""

    RDE_STAGING = "RDE_STAGING"
    BRDA = "BRDA"


def mode_for(cursor_type: CursorType) -> DepositMode:
    """Return the deposit mode driven by a cursor type."""
    return DepositMode.FULL if cursor_type == CursorType.RDE_STAGING else DepositMode.THIN


def cursor_type_for(mode: DepositMode) -> CursorType:
    """Return the cursor type that tracks a deposit mode."""
    return CursorType.RDE_STAGING if mode == DepositMode.FULL else CursorType.BRDA


def require_utc(value: datetime) -> datetime:
    """Reject naive instants and convert aware ones to UTC."""
    if value.tzinfo is None:
        raise ValueError("watermark must be timezone-aware")
    return value.astimezone(timezone.utc)


class DepositKey(BaseModel):
    """
    Groups mapper output for a single reducer invocation.

    Equality and hashing cover all three fields.

    Attributes:
        tld: Top-level domain the deposit is for
        mode: FULL or THIN
        watermark: Point in time the deposit is anchored to
    """

    tld: str = Field(..., min_length=1)
    mode: DepositMode
    watermark: datetime

    @field_validator("watermark")
    @classmethod
    def check_watermark(cls, v: datetime) -> datetime:
        return require_utc(v)

    class Config:
        frozen = True

    @property
    def cursor_type(self) -> CursorType:
        return cursor_type_for(self.mode)

    @property
    def lock_name(self) -> str:
        return f"RDE-{self.tld}-{self.watermark.isoformat()}-{self.mode.value}"

    def as_tuple(self) -> tuple[str, str, str]:
        """Plain tuple form, stable across processes (used as the shuffle key)."""
        return (self.tld, self.mode.value, self.watermark.isoformat())

    @classmethod
    def from_tuple(cls, value: tuple[str, str, str]) -> "DepositKey":
        tld, mode, watermark = value
        return cls(tld=tld, mode=DepositMode(mode), watermark=datetime.fromisoformat(watermark))

    def __str__(self) -> str:
        return f"tld={self.tld} watermark={self.watermark.isoformat()} mode={self.mode.value}"


class PendingDeposit(BaseModel):
    """
    One deposit that is due. Built fresh on every scheduling pass, never persisted.

    Attributes:
        tld: Top-level domain
        mode: FULL or THIN
        watermark: Cursor position the deposit is anchored to
        size_hint: Optional estimate of the number of fragments
    """

    tld: str = Field(..., min_length=1)
    mode: DepositMode
    watermark: datetime
    size_hint: int | None = Field(None, ge=0)

    @field_validator("watermark")
    @classmethod
    def check_watermark(cls, v: datetime) -> datetime:
        return require_utc(v)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "tld": "example",
                "mode": "FULL",
                "watermark": "2024-01-01T00:00:00Z",
            }
        }

    @property
    def cursor_type(self) -> CursorType:
        return cursor_type_for(self.mode)

    def key(self) -> DepositKey:
        return DepositKey(tld=self.tld, mode=self.mode, watermark=self.watermark)

    def __str__(self) -> str:
        return f"PendingDeposit({self.key()})"
