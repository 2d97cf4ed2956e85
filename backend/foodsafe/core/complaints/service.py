import uuid

from foodsafe.core.complaints.schemas import ComplaintCreate, ComplaintUpdate
from foodsafe.core.workflow.engine import create_record, get_record, update_record
from foodsafe.core.workflow.statuses import (
    COMPLAINT_CATEGORIES,
    PRIORITIES,
    EntityType,
    parse_status,
    storage_variants,
)
from foodsafe.core.workflow.store import RecordStore
from foodsafe.db.base import utcnow


async def create_complaint(store: RecordStore, data: ComplaintCreate, actor: str) -> dict:
    row = data.model_dump()
    row["category"] = COMPLAINT_CATEGORIES.to_storage(COMPLAINT_CATEGORIES.parse(data.category))
    row["priority"] = PRIORITIES.to_storage(PRIORITIES.parse(data.priority))
    row["reported_date"] = data.reported_date or utcnow()
    return await create_record(store, EntityType.COMPLAINT, row, actor)


async def get_complaint(store: RecordStore, complaint_id: uuid.UUID) -> dict:
    return await get_record(store, EntityType.COMPLAINT, complaint_id)


async def list_complaints(store: RecordStore, status: str | None = None, category: str | None = None) -> list[dict]:
    filters: dict = {}
    if status:
        filters["status"] = storage_variants(EntityType.COMPLAINT, parse_status(EntityType.COMPLAINT, status))
    if category:
        filters["category"] = COMPLAINT_CATEGORIES.variants(COMPLAINT_CATEGORIES.parse(category))
    return await store.query("complaints", filters, order_by="created_at", descending=True)


async def update_complaint(store: RecordStore, complaint_id: uuid.UUID, data: ComplaintUpdate, actor: str) -> dict:
    changes = data.model_dump(exclude_unset=True)
    for required in ("title", "category", "priority"):
        if changes.get(required) is None:
            changes.pop(required, None)
    if "category" in changes:
        changes["category"] = COMPLAINT_CATEGORIES.to_storage(COMPLAINT_CATEGORIES.parse(changes["category"]))
    if "priority" in changes:
        changes["priority"] = PRIORITIES.to_storage(PRIORITIES.parse(changes["priority"]))
    return await update_record(store, EntityType.COMPLAINT, complaint_id, changes, actor)
