import uuid
from datetime import datetime
from pydantic import BaseModel, Field

class NonConformanceCreate(BaseModel):
    title: str = Field(..., max_length=500)
    description: str | None = None
    item_name: str | None = None
    item_category: str | None = None
    reason_category: str | None = None
    reason_details: str | None = None
    risk_level: str | None = None
    priority: str | None = None
    quantity: float | None = Field(default=None, ge=0)
    quantity_on_hold: float | None = Field(default=None, ge=0)
    units: str | None = None
    location: str | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
    generate_capa: bool = False

class NonConformanceRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    title: str
    description: str | None
    item_name: str | None
    item_category: str | None
    reason_category: str | None
    reason_details: str | None
    status: str
    risk_level: str | None
    priority: str | None
    quantity: float | None
    quantity_on_hold: float | None
    units: str | None
    location: str | None
    capa_id: uuid.UUID | None
    reviewer: str | None
    review_date: datetime | None
    resolution_date: datetime | None
    resolution_details: str | None
    created_by: str
    assigned_to: str | None
    due_date: datetime | None
    status_changed_at: datetime
    created_at: datetime
    updated_at: datetime

class NonConformanceUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    item_name: str | None = None
    item_category: str | None = None
    reason_category: str | None = None
    reason_details: str | None = None
    risk_level: str | None = None
    priority: str | None = None
    quantity: float | None = Field(default=None, ge=0)
    quantity_on_hold: float | None = Field(default=None, ge=0)
    units: str | None = None
    location: str | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None

class LinkCapaRequest(BaseModel):
    capa_id: uuid.UUID
