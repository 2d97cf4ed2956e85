import uuid
from datetime import datetime
from pydantic import AliasChoices, BaseModel, Field


class TransitionRequest(BaseModel):
    to_status: str = Field(min_length=1)
    comment: str | None = None


class ActivityRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    record_id: uuid.UUID
    entity_type: str
    action_type: str
    action_description: str
    performed_by: str
    performed_at: datetime
    old_status: str | None = None
    new_status: str | None = None
    metadata: dict | None = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))


class SweepFailureRead(BaseModel):
    model_config = {"from_attributes": True}
    record_id: uuid.UUID
    error: str


class SweepReportRead(BaseModel):
    model_config = {"from_attributes": True}
    name: str
    processed: int
    changed: int
    failures: list[SweepFailureRead]
    last_processed_id: uuid.UUID | None
    stopped_early: bool


class SweepRequest(BaseModel):
    batch_size: int | None = Field(default=None, gt=0, le=5000)
    start_after: uuid.UUID | None = None
