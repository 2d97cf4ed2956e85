import uuid
from datetime import datetime
from pydantic import BaseModel, Field


class CapaCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    priority: str = "Medium"
    source: str = "other"
    source_id: uuid.UUID | None = None
    department: str | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
    root_cause: str | None = None
    corrective_action: str | None = None
    preventive_action: str | None = None


class CapaUpdate(BaseModel):
    """Status and effectiveness have their own endpoints."""
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    priority: str | None = None
    department: str | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
    root_cause: str | None = None
    corrective_action: str | None = None
    preventive_action: str | None = None


class EffectivenessRequest(BaseModel):
    rating: str
    notes: str | None = None


class CapaRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    title: str
    description: str | None
    status: str
    status_before_overdue: str | None = None
    priority: str
    source: str
    source_id: uuid.UUID | None
    department: str | None
    created_by: str
    assigned_to: str | None
    due_date: datetime | None
    root_cause: str | None
    corrective_action: str | None
    preventive_action: str | None
    automatically_generated: bool
    completion_date: datetime | None
    effectiveness_review_due: datetime | None
    effectiveness_rating: str | None
    effectiveness_verified: bool
    effectiveness_notes: str | None
    verification_date: datetime | None
    verified_by: str | None
    is_overdue: bool = False
    created_at: datetime
    updated_at: datetime
