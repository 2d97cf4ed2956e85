import uuid
from datetime import datetime
from pydantic import BaseModel, Field

class ComplaintCreate(BaseModel):
    title: str = Field(..., max_length=500)
    description: str | None = None
    category: str = "Other"
    priority: str = "Medium"
    customer_name: str | None = None
    customer_contact: str | None = None
    product_involved: str | None = None
    lot_number: str | None = None
    reported_date: datetime | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None

class ComplaintRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    title: str
    description: str | None
    category: str
    status: str
    priority: str
    customer_name: str | None
    customer_contact: str | None
    product_involved: str | None
    lot_number: str | None
    reported_date: datetime
    resolution_date: datetime | None
    capa_id: uuid.UUID | None
    created_by: str
    assigned_to: str | None
    due_date: datetime | None
    created_at: datetime
    updated_at: datetime

class ComplaintUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    customer_name: str | None = None
    customer_contact: str | None = None
    product_involved: str | None = None
    lot_number: str | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
