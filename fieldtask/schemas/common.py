from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def empty_to_none(v):
    if v is None:
        return None
    v = str(v).strip()
    return v or None


class GPSFix(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    recorded_at: Optional[datetime] = None


class IncomingFile(BaseModel):
    """One file as received from the upload plumbing."""

    filename: str
    content_type: str
    data: bytes

    @field_validator("filename")
    @classmethod
    def filename_required(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("filename is required")
        return v

    @property
    def size(self) -> int:
        return len(self.data)
