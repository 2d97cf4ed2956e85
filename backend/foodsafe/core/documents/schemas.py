import uuid
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Literal

VALID_CATEGORIES = Literal[
    "SOP", "Policy", "Form", "Certificate", "Audit Report", "HACCP Plan",
    "Training Material", "Supplier Documentation", "Risk Assessment", "Other",
]


class DocumentCreate(BaseModel):
    title: str = Field(..., max_length=500)
    description: str | None = None
    category: VALID_CATEGORIES = "Other"
    content: str | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
    expiry_date: datetime | None = None


class DocumentRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    title: str
    description: str | None
    category: str
    content: str | None
    status: str
    checkout_status: str
    version: int
    checked_out_by: str | None
    checked_out_at: datetime | None
    approved_by: str | None
    approved_at: datetime | None
    rejection_reason: str | None
    expiry_date: datetime | None
    created_by: str
    assigned_to: str | None
    due_date: datetime | None
    created_at: datetime
    updated_at: datetime


class DocumentUpdate(BaseModel):
    """Metadata only. Content changes go through checkout / checkin."""
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    category: VALID_CATEGORIES | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
    expiry_date: datetime | None = None


class CheckinRequest(BaseModel):
    content: str | None = None
    change_summary: str | None = None


class DocumentVersionRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    document_id: uuid.UUID
    version_no: int
    content: str | None
    change_summary: str | None
    checked_in_by: str
    created_at: datetime
