"""
Cross-entity linker.

Creates CAPAs from non-conformances and complaints and maintains the
two-way reference (capa.source/source_id <-> source.capa_id). There is no
transaction spanning both records, so every step is written to converge on
retry: the unique (source, source_id) index stops a second CAPA, the
back-reference is a conditional write, and the Activities carry dedupe keys.
"""
import logging
import uuid
from datetime import datetime, timedelta

from foodsafe.core.activity.service import SYSTEM_ACTOR, ActionType, record_activity, record_activity_once
from foodsafe.core.workflow.engine import check_actor, get_record, table_for
from foodsafe.core.workflow.errors import ConflictError, ConstraintViolation, NotFoundError, ValidationError
from foodsafe.core.workflow.statuses import (
    COMPLAINT_CATEGORIES,
    PRIORITIES,
    SOURCES,
    CapaPriority,
    CapaSource,
    CapaStatus,
    ComplaintCategory,
    ComplaintStatus,
    EntityType,
    NCStatus,
    from_storage,
    status_equals,
    to_storage,
)
from foodsafe.core.workflow.store import RecordStore
from foodsafe.db.base import utcnow

logger = logging.getLogger(__name__)

CAPA_SOURCE_FOR = {
    EntityType.NON_CONFORMANCE: CapaSource.NON_CONFORMANCE,
    EntityType.COMPLAINT: CapaSource.COMPLAINT,
}

# Days allowed to implement a CAPA, by priority.
IMPLEMENTATION_DAYS = {
    CapaPriority.CRITICAL: 7,
    CapaPriority.HIGH: 14,
    CapaPriority.MEDIUM: 21,
    CapaPriority.LOW: 30,
}

_PRIORITY_LADDER = [CapaPriority.LOW, CapaPriority.MEDIUM, CapaPriority.HIGH, CapaPriority.CRITICAL]

_SEVERE_CATEGORIES = {ComplaintCategory.FOOD_SAFETY, ComplaintCategory.FOREIGN_MATERIAL}


def raise_priority(priority: CapaPriority) -> CapaPriority:
    idx = _PRIORITY_LADDER.index(priority)
    return _PRIORITY_LADDER[min(idx + 1, len(_PRIORITY_LADDER) - 1)]


def derive_priority(source_type: EntityType | str, source: dict) -> CapaPriority:
    """Source priority (Medium when unset), one level higher for severe sources."""
    source_type = EntityType(source_type)
    base = PRIORITIES.from_storage(source.get("priority"))
    if source_type is EntityType.COMPLAINT:
        severe = (
            COMPLAINT_CATEGORIES.from_storage(source.get("category")) in _SEVERE_CATEGORIES
            or status_equals(source_type, source.get("status"), ComplaintStatus.ESCALATED)
        )
    else:
        severe = status_equals(source_type, source.get("status"), NCStatus.UNDER_REVIEW)
    return raise_priority(base) if severe else base


def _source_type(source_type: EntityType | str) -> EntityType:
    try:
        source_type = EntityType(source_type)
    except ValueError:
        raise ValidationError(f"Unknown source type {source_type!r}") from None
    if source_type not in CAPA_SOURCE_FOR:
        raise ValidationError(f"A CAPA cannot be generated from a {source_type.label}")
    return source_type


async def _find_capa_for_source(store: RecordStore, capa_source: CapaSource, source_id: uuid.UUID) -> dict | None:
    rows = await store.query(
        "capas",
        {"source": SOURCES.variants(capa_source), "source_id": source_id},
        limit=1,
    )
    return rows[0] if rows else None


async def generate_capa(
    store: RecordStore,
    source_type: EntityType | str,
    source_id: uuid.UUID,
    actor: str | None,
    *,
    automatic: bool = False,
    now: datetime | None = None,
) -> dict:
    """
    Create (or return the existing) CAPA for a non-conformance or complaint.

    Safe to call repeatedly and to retry after a partial failure: the result
    is always the one CAPA for the source, with the back-reference written.
    """
    source_type = _source_type(source_type)
    if automatic and not actor:
        actor = SYSTEM_ACTOR
    elif not automatic:
        check_actor(actor)
    now = now or utcnow()
    capa_source = CAPA_SOURCE_FOR[source_type]

    source = await get_record(store, source_type, source_id)
    capa = None
    if source.get("capa_id"):
        capa = await store.get("capas", source["capa_id"])
        if capa is None:
            logger.warning("%s %s references missing CAPA %s", source_type.label, source_id, source["capa_id"])
        elif capa.get("source_id") != source_id:
            # manually linked CAPA, nothing was generated here
            return capa
        else:
            await _record_generation(store, source_type, source_id, capa, actor, automatic, now)
            return capa

    capa = await _find_capa_for_source(store, capa_source, source_id)
    if capa is None:
        priority = derive_priority(source_type, source)
        title = source.get("title") or str(source_id)
        row = {
            "id": uuid.uuid4(),
            "title": f"CAPA for {source_type.label}: {title}",
            "description": source.get("description"),
            "status": to_storage(EntityType.CAPA, CapaStatus.OPEN),
            "priority": PRIORITIES.to_storage(priority),
            "source": SOURCES.to_storage(capa_source),
            "source_id": source_id,
            "created_by": actor,
            "assigned_to": source.get("assigned_to"),
            "due_date": now + timedelta(days=IMPLEMENTATION_DAYS[priority]),
            "automatically_generated": automatic,
            "status_changed_at": now,
        }
        try:
            capa = await store.insert("capas", row)
        except ConstraintViolation:
            capa = await _find_capa_for_source(store, capa_source, source_id)
            if capa is None:
                raise
            logger.info("CAPA for %s %s created concurrently, reusing %s", source_type.label, source_id, capa["id"])
        else:
            logger.info("Generated CAPA %s from %s %s", capa["id"], source_type.label, source_id)

    await attach_capa(store, source_type, source, capa, actor, automatic=automatic, now=now)
    return capa


async def attach_capa(
    store: RecordStore,
    source_type: EntityType | str,
    source: dict,
    capa: dict,
    actor: str,
    *,
    automatic: bool = False,
    now: datetime | None = None,
) -> None:
    """
    Write ``source.capa_id`` for a CAPA created from ``source``, and the
    Activities on both records. Converges on retry.
    """
    source_type = _source_type(source_type)
    source_id = source["id"]
    linked = await store.update(
        table_for(source_type),
        source_id,
        {"capa_id": capa["id"]},
        only_if={"capa_id": source.get("capa_id")},
    )
    if linked is None:
        latest = await get_record(store, source_type, source_id)
        if latest.get("capa_id") != capa["id"]:
            raise ConflictError(f"{source_type.label} {source_id} is already linked to CAPA {latest.get('capa_id')}")

    await _record_generation(store, source_type, source_id, capa, actor, automatic, now or utcnow())


async def _record_generation(
    store: RecordStore,
    source_type: EntityType,
    source_id: uuid.UUID,
    capa: dict,
    actor: str,
    automatic: bool,
    now: datetime,
) -> None:
    await record_activity_once(
        store,
        f"capa_generated:{capa['id']}",
        record_id=capa["id"],
        entity_type=EntityType.CAPA,
        action_type=ActionType.CAPA_GENERATED,
        description=f"CAPA generated from {source_type.label} {source_id}",
        performed_by=actor,
        new_status=to_storage(EntityType.CAPA, CapaStatus.OPEN),
        metadata={
            "automatic": automatic,
            "source": SOURCES.to_storage(CAPA_SOURCE_FOR[source_type]),
            "source_id": str(source_id),
        },
        now=now,
    )
    await record_activity_once(
        store,
        f"capa_linked:{source_id}:{capa['id']}",
        record_id=source_id,
        entity_type=source_type,
        action_type=ActionType.CAPA_GENERATED,
        description=f"CAPA {capa['id']} generated",
        performed_by=actor,
        metadata={"automatic": automatic, "capa_id": str(capa["id"])},
        now=now,
    )


async def link_capa(
    store: RecordStore,
    nc_id: uuid.UUID,
    capa_id: uuid.UUID,
    actor: str,
    *,
    now: datetime | None = None,
) -> dict:
    """Associate an existing CAPA with a non-conformance. Returns the NC row."""
    check_actor(actor)
    now = now or utcnow()
    nc = await get_record(store, EntityType.NON_CONFORMANCE, nc_id)
    capa = await store.get("capas", capa_id)
    if capa is None:
        raise NotFoundError(f"CAPA {capa_id} not found")

    capa_status = from_storage(EntityType.CAPA, capa.get("status"))
    if capa_status in (CapaStatus.CLOSED, CapaStatus.VERIFIED):
        raise ConflictError(
            f"Cannot link to a CAPA that is already '{to_storage(EntityType.CAPA, capa_status)}'"
        )
    if nc.get("capa_id") == capa_id:
        return nc  # idempotent
    if nc.get("capa_id") is not None:
        raise ConflictError(f"Non-Conformance {nc_id} is already linked to CAPA {nc['capa_id']}")

    updated = await store.update("non_conformances", nc_id, {"capa_id": capa_id}, only_if={"capa_id": None})
    if updated is None:
        latest = await get_record(store, EntityType.NON_CONFORMANCE, nc_id)
        if latest.get("capa_id") == capa_id:
            return latest
        raise ConflictError(f"Non-Conformance {nc_id} is already linked to CAPA {latest.get('capa_id')}")

    await record_activity(
        store,
        record_id=nc_id,
        entity_type=EntityType.NON_CONFORMANCE,
        action_type=ActionType.CAPA_LINKED,
        description=f"Linked to CAPA {capa_id}",
        performed_by=actor,
        metadata={"capa_id": str(capa_id)},
        now=now,
    )
    await record_activity(
        store,
        record_id=capa_id,
        entity_type=EntityType.CAPA,
        action_type=ActionType.CAPA_LINKED,
        description=f"Linked to Non-Conformance {nc_id}",
        performed_by=actor,
        metadata={"nc_id": str(nc_id)},
        now=now,
    )
    logger.info("Linked Non-Conformance %s to CAPA %s", nc_id, capa_id)
    return updated
