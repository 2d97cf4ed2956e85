import logging
import uuid
from datetime import datetime

from foodsafe.core.activity.service import SYSTEM_ACTOR, ActionType, record_activity
from foodsafe.core.capa.schemas import CapaCreate, CapaUpdate
from foodsafe.core.workflow.engine import apply_transition, check_actor, create_record, get_record, update_record
from foodsafe.core.workflow.errors import ConflictError, ValidationError
from foodsafe.core.workflow.linker import CAPA_SOURCE_FOR, attach_capa
from foodsafe.core.workflow.scheduler import is_overdue
from foodsafe.core.workflow.statuses import (
    EFFECTIVENESS_RATINGS,
    PRIORITIES,
    SOURCES,
    CapaStatus,
    EntityType,
    canonicalize,
    parse_status,
    status_equals,
    storage_variants,
)
from foodsafe.core.workflow.store import RecordStore
from foodsafe.core.workflow.transitions import overdue_resume_status
from foodsafe.db.base import utcnow

logger = logging.getLogger(__name__)


def present(capa: dict, now: datetime | None = None) -> dict:
    """Stored row -> API shape: canonical spellings plus the read-side overdue flag."""
    out = canonicalize(EntityType.CAPA, capa)
    out["is_overdue"] = is_overdue(capa, now)
    return out


async def create_capa(store: RecordStore, data: CapaCreate, actor: str) -> dict:
    """A CAPA raised against a non-conformance or complaint is linked back to it."""
    source = SOURCES.parse(data.source)
    source_type = source_row = None
    if data.source_id is not None:
        source_type = next((t for t, s in CAPA_SOURCE_FOR.items() if s is source), None)
        if source_type is None:
            raise ValidationError(f"source_id is only allowed for {', '.join(SOURCES.to_storage(s) for s in CAPA_SOURCE_FOR.values())} CAPAs")
        source_row = await get_record(store, source_type, data.source_id)
        if source_row.get("capa_id"):
            raise ConflictError(f"{source_type.label} {data.source_id} is already linked to CAPA {source_row['capa_id']}")
    row = data.model_dump()
    row["priority"] = PRIORITIES.to_storage(PRIORITIES.parse(data.priority))
    row["source"] = SOURCES.to_storage(source)
    capa = await create_record(store, EntityType.CAPA, row, actor)
    if source_row is not None:
        await attach_capa(store, source_type, source_row, capa, actor)
    return capa


async def get_capa(store: RecordStore, capa_id: uuid.UUID) -> dict:
    return await get_record(store, EntityType.CAPA, capa_id)


async def list_capas(store: RecordStore, status: str | None = None, source_id: uuid.UUID | None = None) -> list[dict]:
    filters: dict = {}
    if status:
        filters["status"] = storage_variants(EntityType.CAPA, parse_status(EntityType.CAPA, status))
    if source_id:
        filters["source_id"] = source_id
    return await store.query("capas", filters, order_by="created_at", descending=True)


async def update_capa(
    store: RecordStore,
    capa_id: uuid.UUID,
    data: CapaUpdate,
    actor: str,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    changes = data.model_dump(exclude_unset=True)
    for required in ("title", "priority"):
        if changes.get(required) is None:
            changes.pop(required, None)
    if "priority" in changes:
        changes["priority"] = PRIORITIES.to_storage(PRIORITIES.parse(changes["priority"]))
    updated = await update_record(store, EntityType.CAPA, capa_id, changes, actor, now=now)
    if "due_date" in changes and status_equals(EntityType.CAPA, updated.get("status"), CapaStatus.OVERDUE):
        due = updated.get("due_date")
        if due is None or due >= now:
            # no longer past due: back to the status the sweep raised it from
            updated = await apply_transition(
                store,
                EntityType.CAPA,
                capa_id,
                overdue_resume_status(updated.get("status_before_overdue")),
                SYSTEM_ACTOR,
                automated=True,
                comment=f"due date extended by {actor}",
                now=now,
            )
    return updated


async def rate_effectiveness(
    store: RecordStore,
    capa_id: uuid.UUID,
    rating: str,
    actor: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Record the effectiveness check. Only a Closed CAPA can be rated."""
    check_actor(actor)
    now = now or utcnow()
    value = EFFECTIVENESS_RATINGS.parse(rating)
    capa = await get_capa(store, capa_id)
    if not status_equals(EntityType.CAPA, capa.get("status"), CapaStatus.CLOSED):
        raise ValidationError("Effectiveness can only be rated once the CAPA is Closed")

    stored = EFFECTIVENESS_RATINGS.to_storage(value)
    updated = await store.update(
        "capas",
        capa_id,
        {
            "effectiveness_rating": stored,
            "effectiveness_verified": True,
            "effectiveness_notes": notes,
            "verification_date": now,
            "verified_by": actor,
        },
        only_if={"status": storage_variants(EntityType.CAPA, CapaStatus.CLOSED)},
    )
    if updated is None:
        raise ConflictError("CAPA status changed before the rating was saved")

    await record_activity(
        store,
        record_id=capa_id,
        entity_type=EntityType.CAPA,
        action_type=ActionType.EFFECTIVENESS_RATED,
        description=f"Effectiveness rated '{stored}'",
        performed_by=actor,
        metadata={"rating": stored, "notes": notes},
        now=now,
    )
    logger.info("CAPA %s rated %s by %s", capa_id, stored, actor)
    return updated
