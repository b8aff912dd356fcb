import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .common import empty_to_none


class InventoryItemBase(BaseModel):
    branch_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)
    unit: Literal["kg", "liter", "piece"] = "piece"
    quantity_current: float = Field(default=0, ge=0)
    quantity_minimum: float = Field(default=10, ge=0)
    description: Optional[str] = None
    is_active: bool = True
    low_stock_alert_enabled: bool = True

    @field_validator("description", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return empty_to_none(v)


class InventoryItemCreate(InventoryItemBase):
    pass


class InventoryItemResponse(InventoryItemBase):
    id: uuid.UUID
    stock_status: str
    last_restocked: Optional[datetime] = None
    low_stock_alert_sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
