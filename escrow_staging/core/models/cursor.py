"""
Cursor model: the only durable record of which deposits are done.
"""

from datetime import datetime

from pydantic import BaseModel, field_validator

from .deposit import CursorType, require_utc


class Cursor(BaseModel):
    """
    Progress marker per (tld, cursor type).

    Position never moves backwards during normal operation. A deposit for
    watermark ``w`` may only be generated while ``position <= w``.

    Attributes:
        tld: Top-level domain
        cursor_type: RDE_STAGING or BRDA
        position: Next watermark to be deposited
        updated_at: When the cursor row was last written
    """

    tld: str
    cursor_type: CursorType
    position: datetime
    updated_at: datetime | None = None

    @field_validator("position", "updated_at")
    @classmethod
    def check_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else require_utc(v)

    class Config:
        json_schema_extra = {
            "example": {
                "tld": "example",
                "cursor_type": "RDE_STAGING",
                "position": "2024-01-02T00:00:00Z",
                "updated_at": "2024-01-02T01:03:11Z",
            }
        }
