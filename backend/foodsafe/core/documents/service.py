import logging
import uuid
from datetime import datetime

from foodsafe.core.activity.service import ActionType, record_activity
from foodsafe.core.documents.schemas import DocumentCreate, DocumentUpdate
from foodsafe.core.workflow.engine import check_actor, create_record, get_record, update_record
from foodsafe.core.workflow.errors import ConflictError, ValidationError
from foodsafe.core.workflow.statuses import (
    CheckoutStatus,
    DocumentStatus,
    EntityType,
    from_storage,
    parse_status,
    storage_variants,
    to_storage,
)
from foodsafe.core.workflow.store import RecordStore
from foodsafe.core.workflow.transitions import validate_transition
from foodsafe.db.base import utcnow

logger = logging.getLogger(__name__)

READ_ONLY_STATUSES = (DocumentStatus.ARCHIVED, DocumentStatus.EXPIRED)


# ── Documents ─────────────────────────────────────────────────────────────────

async def create_document(store: RecordStore, data: DocumentCreate, actor: str) -> dict:
    row = data.model_dump()
    row["checkout_status"] = to_storage(EntityType.DOCUMENT_CHECKOUT, CheckoutStatus.AVAILABLE)
    row["version"] = 1
    return await create_record(store, EntityType.DOCUMENT, row, actor)


async def get_document(store: RecordStore, document_id: uuid.UUID) -> dict:
    return await get_record(store, EntityType.DOCUMENT, document_id)


async def list_documents(store: RecordStore, status: str | None = None, category: str | None = None) -> list[dict]:
    filters: dict = {}
    if status:
        filters["status"] = storage_variants(EntityType.DOCUMENT, parse_status(EntityType.DOCUMENT, status))
    if category:
        filters["category"] = category
    return await store.query("documents", filters, order_by="created_at", descending=True)


async def update_document(store: RecordStore, document_id: uuid.UUID, data: DocumentUpdate, actor: str) -> dict:
    changes = data.model_dump(exclude_unset=True)
    for required in ("title", "category"):
        if changes.get(required) is None:
            changes.pop(required, None)
    return await update_record(store, EntityType.DOCUMENT, document_id, changes, actor)


# ── Checkout / checkin ────────────────────────────────────────────────────────

async def checkout_document(
    store: RecordStore,
    document_id: uuid.UUID,
    actor: str,
    now: datetime | None = None,
) -> dict:
    """Lock a document for editing. Checking out your own checkout again is a no-op."""
    check_actor(actor)
    now = now or utcnow()
    doc = await get_document(store, document_id)
    status = from_storage(EntityType.DOCUMENT, doc.get("status"))
    if status in READ_ONLY_STATUSES:
        raise ConflictError(f"{to_storage(EntityType.DOCUMENT, status)} documents cannot be checked out")

    current = from_storage(EntityType.DOCUMENT_CHECKOUT, doc.get("checkout_status"))
    if current is CheckoutStatus.CHECKED_OUT:
        if doc.get("checked_out_by") == actor:
            return doc  # idempotent
        raise ConflictError(f"Document is already checked out by {doc.get('checked_out_by')}")
    check = validate_transition(EntityType.DOCUMENT_CHECKOUT, current, CheckoutStatus.CHECKED_OUT)
    if not check.legal:
        raise ValidationError(check.reason)

    old_name = to_storage(EntityType.DOCUMENT_CHECKOUT, current)
    new_name = to_storage(EntityType.DOCUMENT_CHECKOUT, CheckoutStatus.CHECKED_OUT)
    updated = await store.update(
        "documents",
        document_id,
        {"checkout_status": new_name, "checked_out_by": actor, "checked_out_at": now},
        only_if={"checkout_status": storage_variants(EntityType.DOCUMENT_CHECKOUT, CheckoutStatus.AVAILABLE)},
    )
    if updated is None:
        raise ConflictError("Document was checked out by someone else")

    await record_activity(
        store,
        record_id=document_id,
        entity_type=EntityType.DOCUMENT,
        action_type=ActionType.CHECKED_OUT,
        description=f"Checked out version {doc['version']}",
        performed_by=actor,
        old_status=old_name,
        new_status=new_name,
        metadata={"version": doc["version"]},
        now=now,
    )
    return updated


async def checkin_document(
    store: RecordStore,
    document_id: uuid.UUID,
    actor: str,
    content: str | None = None,
    change_summary: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Release the lock, bump the version and keep a copy of the checked-in content."""
    check_actor(actor)
    now = now or utcnow()
    doc = await get_document(store, document_id)
    current = from_storage(EntityType.DOCUMENT_CHECKOUT, doc.get("checkout_status"))
    if current is not CheckoutStatus.CHECKED_OUT:
        raise ConflictError("Document is not checked out")
    if doc.get("checked_out_by") != actor:
        raise ConflictError(f"Document is checked out by {doc.get('checked_out_by')}")

    new_version = doc["version"] + 1
    new_content = content if content is not None else doc.get("content")
    old_name = to_storage(EntityType.DOCUMENT_CHECKOUT, current)
    new_name = to_storage(EntityType.DOCUMENT_CHECKOUT, CheckoutStatus.AVAILABLE)
    updated = await store.update(
        "documents",
        document_id,
        {
            "checkout_status": new_name,
            "checked_out_by": None,
            "checked_out_at": None,
            "version": new_version,
            "content": new_content,
        },
        only_if={
            "checkout_status": storage_variants(EntityType.DOCUMENT_CHECKOUT, CheckoutStatus.CHECKED_OUT),
            "checked_out_by": actor,
            "version": doc["version"],
        },
    )
    if updated is None:
        raise ConflictError("Document changed during checkin")

    await store.insert(
        "document_versions",
        {
            "id": uuid.uuid4(),
            "document_id": document_id,
            "version_no": new_version,
            "content": new_content,
            "change_summary": change_summary,
            "checked_in_by": actor,
        },
    )
    await record_activity(
        store,
        record_id=document_id,
        entity_type=EntityType.DOCUMENT,
        action_type=ActionType.CHECKED_IN,
        description=f"Checked in version {new_version}" + (f": {change_summary}" if change_summary else ""),
        performed_by=actor,
        old_status=old_name,
        new_status=new_name,
        metadata={"version": new_version},
        now=now,
    )
    logger.info("Document %s checked in as version %d by %s", document_id, new_version, actor)
    return updated


async def list_versions(store: RecordStore, document_id: uuid.UUID) -> list[dict]:
    return await store.query(
        "document_versions", {"document_id": document_id}, order_by="version_no", descending=True,
    )
