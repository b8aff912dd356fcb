import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .common import empty_to_none


SiteType = Literal["residential", "commercial", "industrial", "public", "agricultural"]
SectionStatus = Literal["pending", "in-progress", "completed", "maintenance"]


class SectionBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    area: float = Field(default=0, ge=0)
    status: SectionStatus = "pending"
    notes: Optional[str] = None

    @field_validator("description", "notes", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return empty_to_none(v)


class SectionCreate(SectionBase):
    pass


class SectionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    area: Optional[float] = Field(default=None, ge=0)
    status: Optional[SectionStatus] = None
    notes: Optional[str] = None


class SiteCreate(BaseModel):
    client_id: uuid.UUID
    branch_id: Optional[uuid.UUID] = None
    name: str = Field(min_length=1, max_length=255)
    address: Optional[str] = None
    city: Optional[str] = None
    google_maps_link: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    total_area: float = Field(default=0, ge=0)
    site_type: SiteType = "residential"
    description: Optional[str] = Field(default=None, max_length=2000)
    notes: Optional[str] = None
    sections: List[SectionCreate] = []

    @field_validator("address", "city", "google_maps_link", "description", "notes", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return empty_to_none(v)


class ReferenceMediaResponse(BaseModel):
    id: uuid.UUID
    url: str
    storage_id: Optional[str] = None
    caption: Optional[str] = None
    media_kind: str = "image"
    format: Optional[str] = None
    duration: Optional[float] = None
    qty: int = 1
    description: Optional[str] = None
    uploaded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SectionResponse(SectionBase):
    id: uuid.UUID
    last_worked_on: Optional[datetime] = None
    last_task_status: Optional[str] = None
    last_task_date: Optional[datetime] = None
    last_task_id: Optional[uuid.UUID] = None
    reference_media: List[ReferenceMediaResponse] = []

    class Config:
        from_attributes = True


class SiteResponse(BaseModel):
    id: uuid.UUID
    client_id: uuid.UUID
    branch_id: Optional[uuid.UUID] = None
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    google_maps_link: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    total_area: float = 0
    site_type: str
    description: Optional[str] = None
    is_active: bool = True
    cover_image_url: Optional[str] = None
    cover_image_storage_id: Optional[str] = None
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0
    last_visit: Optional[datetime] = None
    notes: Optional[str] = None
    sections: List[SectionResponse] = []

    class Config:
        from_attributes = True
