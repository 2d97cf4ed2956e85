import uuid
from datetime import datetime
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from foodsafe.core.notifications import service
from foodsafe.core.workflow.store import RecordStore
from foodsafe.dependencies import CurrentActor, get_current_actor, get_store

router = APIRouter(tags=["notifications"])


class NotificationRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    message: str
    kind: str
    record_id: uuid.UUID | None
    entity_type: str | None
    is_read: bool
    created_at: datetime


@router.get("/notifications", response_model=list[NotificationRead])
async def list_notifications(unread_only: bool = False, store: RecordStore = Depends(get_store), current: CurrentActor = Depends(get_current_actor)):
    return await service.list_notifications(store, current.actor_id, unread_only)


@router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
async def mark_read(notification_id: uuid.UUID, store: RecordStore = Depends(get_store), current: CurrentActor = Depends(get_current_actor)):
    return await service.mark_read(store, current.actor_id, notification_id)
