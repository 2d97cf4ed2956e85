"""
Transition engine.

The only code path that changes a record's primary status. Validates with
the transition table, writes the new status with compare-and-set on the
previous one, applies the per-entity timestamp side effects and appends
exactly one Activity. Never touches linked records.
"""
import enum
import logging
import uuid
from datetime import datetime, timedelta

from foodsafe.core.activity.service import SYSTEM_ACTOR, ActionType, record_activity
from foodsafe.core.workflow.errors import ConflictError, NotFoundError, ValidationError
from foodsafe.core.workflow.statuses import (
    PRIORITIES,
    CapaPriority,
    CapaStatus,
    CheckoutStatus,
    ComplaintStatus,
    DocumentStatus,
    EntityType,
    NCStatus,
    from_storage,
    parse_status,
    storage_variants,
    to_storage,
)
from foodsafe.core.workflow.store import RecordStore
from foodsafe.core.workflow.transitions import validate_transition
from foodsafe.db.base import utcnow
from foodsafe.settings import get_settings

logger = logging.getLogger(__name__)

TABLE_FOR = {
    EntityType.CAPA: "capas",
    EntityType.NON_CONFORMANCE: "non_conformances",
    EntityType.COMPLAINT: "complaints",
    EntityType.DOCUMENT: "documents",
}


def table_for(entity_type: EntityType | str) -> str:
    entity_type = EntityType(entity_type)
    try:
        return TABLE_FOR[entity_type]
    except KeyError:
        raise ValidationError(f"{entity_type.label} has no table of its own") from None


async def get_record(store: RecordStore, entity_type: EntityType | str, record_id: uuid.UUID) -> dict:
    entity_type = EntityType(entity_type)
    row = await store.get(table_for(entity_type), record_id)
    if row is None:
        raise NotFoundError(f"{entity_type.label} {record_id} not found")
    return row


def check_actor(actor: str | None) -> str:
    if not actor:
        raise ValidationError("An acting user is required")
    if actor == SYSTEM_ACTOR:
        raise ValidationError(f"'{SYSTEM_ACTOR}' is reserved for automation")
    return actor


async def create_record(
    store: RecordStore,
    entity_type: EntityType | str,
    row: dict,
    actor: str,
    *,
    now: datetime | None = None,
) -> dict:
    """Insert a new record in its initial status and log its creation."""
    entity_type = EntityType(entity_type)
    check_actor(actor)
    now = now or utcnow()
    status = to_storage(entity_type, from_storage(entity_type, None))
    created = await store.insert(
        table_for(entity_type),
        {**row, "id": row.get("id") or uuid.uuid4(), "status": status, "created_by": actor, "status_changed_at": now},
    )
    await record_activity(
        store,
        record_id=created["id"],
        entity_type=entity_type,
        action_type=ActionType.CREATED,
        description=f"{entity_type.label} created",
        performed_by=actor,
        new_status=status,
        now=now,
    )
    return created


async def update_record(
    store: RecordStore,
    entity_type: EntityType | str,
    record_id: uuid.UUID,
    changes: dict,
    actor: str,
    *,
    now: datetime | None = None,
) -> dict:
    """Edit non-status fields. Unchanged values are dropped; nothing changed means no write."""
    entity_type = EntityType(entity_type)
    check_actor(actor)
    if "status" in changes or "checkout_status" in changes:
        raise ValidationError("Status changes must go through a transition")
    row = await get_record(store, entity_type, record_id)
    changed = {k: v for k, v in changes.items() if row.get(k) != v}
    if not changed:
        return row
    updated = await store.update(table_for(entity_type), record_id, changed)
    if updated is None:
        raise NotFoundError(f"{entity_type.label} {record_id} not found")
    await record_activity(
        store,
        record_id=record_id,
        entity_type=entity_type,
        action_type=ActionType.UPDATED,
        description=f"{entity_type.label} updated: {', '.join(sorted(changed))}",
        performed_by=actor,
        metadata={"fields": sorted(changed)},
        now=now,
    )
    return updated


def _side_effects(
    entity_type: EntityType,
    current: enum.Enum,
    target: enum.Enum,
    actor: str,
    comment: str | None,
    now: datetime,
) -> dict:
    patch: dict = {}
    if entity_type is EntityType.CAPA:
        if target is CapaStatus.OVERDUE:
            patch["status_before_overdue"] = to_storage(entity_type, current)
            patch["priority"] = PRIORITIES.to_storage(CapaPriority.CRITICAL)
        elif current is CapaStatus.OVERDUE:
            patch["status_before_overdue"] = None
        if target is CapaStatus.CLOSED:
            patch["completion_date"] = now
            patch["effectiveness_review_due"] = now + timedelta(days=get_settings().CAPA_EFFECTIVENESS_REVIEW_DAYS)
    elif entity_type is EntityType.NON_CONFORMANCE:
        if target is NCStatus.UNDER_REVIEW:
            patch["reviewer"] = actor
            patch["review_date"] = now
        elif target in (NCStatus.RESOLVED, NCStatus.REJECTED, NCStatus.DISPOSED, NCStatus.RELEASED):
            patch["resolution_date"] = now
            if comment:
                patch["resolution_details"] = comment
    elif entity_type is EntityType.COMPLAINT:
        if target is ComplaintStatus.RESOLVED:
            patch["resolution_date"] = now
    elif entity_type is EntityType.DOCUMENT:
        if target is DocumentStatus.APPROVED:
            patch["approved_by"] = actor
            patch["approved_at"] = now
        elif target is DocumentStatus.REJECTED:
            patch["rejection_reason"] = comment
    return patch


async def apply_transition(
    store: RecordStore,
    entity_type: EntityType | str,
    record_id: uuid.UUID,
    to_status,
    actor: str,
    *,
    comment: str | None = None,
    automated: bool = False,
    now: datetime | None = None,
) -> dict:
    """
    Move a record to ``to_status``. Returns the stored row.

    Requesting the current status is a no-op: nothing is written and no
    Activity is logged. A concurrent status change between read and write
    raises ConflictError and logs nothing.
    """
    entity_type = EntityType(entity_type)
    table = table_for(entity_type)
    if automated:
        actor = SYSTEM_ACTOR
    else:
        check_actor(actor)
    now = now or utcnow()

    row = await get_record(store, entity_type, record_id)
    current = from_storage(entity_type, row.get("status"))
    target = parse_status(entity_type, to_status)
    if target is current:
        return row  # idempotent

    check = validate_transition(
        entity_type, current, target, automated=automated, resume_status=row.get("status_before_overdue"),
    )
    if not check.legal:
        raise ValidationError(check.reason)

    only_if = {"status": storage_variants(entity_type, current)}
    if entity_type is EntityType.DOCUMENT:
        checkout = from_storage(EntityType.DOCUMENT_CHECKOUT, row.get("checkout_status"))
        if checkout is CheckoutStatus.CHECKED_OUT:
            raise ConflictError(
                f"Document is checked out by {row.get('checked_out_by') or 'another user'}; "
                "check it in before changing its status"
            )
        only_if["checkout_status"] = storage_variants(EntityType.DOCUMENT_CHECKOUT, CheckoutStatus.AVAILABLE)

    old_name = to_storage(entity_type, current)
    new_name = to_storage(entity_type, target)
    patch = {"status": new_name, "status_changed_at": now}
    patch.update(_side_effects(entity_type, current, target, actor, comment, now))

    updated = await store.update(table, record_id, patch, only_if=only_if)
    if updated is None:
        latest = await get_record(store, entity_type, record_id)
        raise ConflictError(
            f"{entity_type.label} was changed concurrently and is now "
            f"'{to_storage(entity_type, from_storage(entity_type, latest.get('status')))}'"
        )

    description = f"Status changed from '{old_name}' to '{new_name}'"
    if comment:
        description = f"{description}: {comment}"
    metadata = {"automated": True} if automated else None
    if "priority" in patch and patch["priority"] != row.get("priority"):
        metadata = {**(metadata or {}), "priority_from": row.get("priority"), "priority_to": patch["priority"]}
    if comment:
        metadata = {**(metadata or {}), "comment": comment}
    await record_activity(
        store,
        record_id=record_id,
        entity_type=entity_type,
        action_type=ActionType.STATUS_CHANGE,
        description=description,
        performed_by=actor,
        old_status=old_name,
        new_status=new_name,
        metadata=metadata,
        now=now,
    )
    logger.info("%s %s: %s -> %s by %s", entity_type.label, record_id, old_name, new_name, actor)
    return updated
