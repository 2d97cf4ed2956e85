import enum
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from foodsafe.core.workflow.errors import ConstraintViolation, ValidationError
from foodsafe.core.workflow.statuses import EntityType
from foodsafe.core.workflow.store import RecordStore
from foodsafe.db.base import utcnow

logger = logging.getLogger(__name__)

# Reserved actor for scheduler-produced entries. User-facing paths refuse it.
SYSTEM_ACTOR = "System"

_TICK = timedelta(microseconds=1)


class SortOrder(str, enum.Enum):
    ASC = "asc"    # timeline
    DESC = "desc"  # feed, newest first


class ActionType:
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGE = "status_change"
    CAPA_GENERATED = "capa_generated"
    CAPA_LINKED = "capa_linked"
    EFFECTIVENESS_RATED = "effectiveness_rated"
    EFFECTIVENESS_REVIEW_DUE = "effectiveness_review_due"
    DEADLINE_WARNING = "deadline_warning"
    ESCALATION = "escalation"
    CHECKED_OUT = "checked_out"
    CHECKED_IN = "checked_in"


async def record_activity(
    store: RecordStore,
    *,
    record_id: uuid.UUID,
    entity_type: EntityType | str,
    action_type: str,
    description: str,
    performed_by: str,
    old_status: str | None = None,
    new_status: str | None = None,
    metadata: dict[str, Any] | None = None,
    dedupe_key: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Append one entry to a record's audit trail.

    performed_at is kept strictly increasing per record: if the clock has not
    moved past the latest entry, the new one is placed one microsecond after it.
    """
    if not performed_by:
        raise ValidationError("performed_by is required")
    performed_at = now or utcnow()
    latest = await store.query(
        "activities",
        {"record_id": record_id},
        order_by="performed_at",
        descending=True,
        limit=1,
    )
    if latest and latest[0]["performed_at"] >= performed_at:
        performed_at = latest[0]["performed_at"] + _TICK

    entry = await store.insert(
        "activities",
        {
            "id": uuid.uuid4(),
            "record_id": record_id,
            "entity_type": EntityType(entity_type).value,
            "action_type": action_type,
            "action_description": description,
            "performed_by": performed_by,
            "performed_at": performed_at,
            "old_status": old_status,
            "new_status": new_status,
            "meta": metadata,
            "dedupe_key": dedupe_key,
        },
    )
    logger.debug("Activity %s on %s by %s", action_type, record_id, performed_by)
    return entry


async def list_activities(store: RecordStore, record_id: uuid.UUID, order: SortOrder | str) -> list[dict]:
    try:
        order = SortOrder(order)
    except ValueError:
        raise ValidationError(f"order must be one of: {', '.join(o.value for o in SortOrder)}") from None
    return await store.query(
        "activities",
        {"record_id": record_id},
        order_by="performed_at",
        descending=order is SortOrder.DESC,
    )


async def has_activity(store: RecordStore, dedupe_key: str) -> bool:
    return bool(await store.query("activities", {"dedupe_key": dedupe_key}, limit=1))


async def record_activity_once(store: RecordStore, dedupe_key: str, **fields) -> bool:
    """record_activity keyed by dedupe_key. Returns False if it was already there."""
    if await has_activity(store, dedupe_key):
        return False
    try:
        await record_activity(store, dedupe_key=dedupe_key, **fields)
    except ConstraintViolation:
        # written by a concurrent run
        logger.debug("Activity %s already recorded", dedupe_key)
        return False
    return True
