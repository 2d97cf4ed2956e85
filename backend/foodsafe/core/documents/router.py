import uuid
from fastapi import APIRouter, Depends

from foodsafe.core.activity.service import SortOrder, list_activities
from foodsafe.core.documents import service
from foodsafe.core.documents.schemas import (
    CheckinRequest, DocumentCreate, DocumentRead, DocumentUpdate, DocumentVersionRead,
)
from foodsafe.core.workflow.engine import apply_transition
from foodsafe.core.workflow.schemas import ActivityRead, TransitionRequest
from foodsafe.core.workflow.statuses import EntityType, canonicalize
from foodsafe.core.workflow.store import RecordStore
from foodsafe.dependencies import CurrentActor, get_current_actor, get_store

router = APIRouter(tags=["documents"])


def _present(doc: dict) -> dict:
    return canonicalize(EntityType.DOCUMENT, doc)


@router.post("/documents", response_model=DocumentRead, status_code=201)
async def create_document(
    data: DocumentCreate,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.create_document(store, data, current.actor_id))


@router.get("/documents", response_model=list[DocumentRead])
async def list_documents(
    status: str | None = None,
    category: str | None = None,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    return [_present(d) for d in await service.list_documents(store, status, category)]


@router.get("/documents/{document_id}", response_model=DocumentRead)
async def get_document(
    document_id: uuid.UUID,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.get_document(store, document_id))


@router.patch("/documents/{document_id}", response_model=DocumentRead)
async def update_document(
    document_id: uuid.UUID,
    data: DocumentUpdate,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.update_document(store, document_id, data, current.actor_id))


@router.post("/documents/{document_id}/transition", response_model=DocumentRead)
async def transition_document(
    document_id: uuid.UUID,
    data: TransitionRequest,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    doc = await apply_transition(store, EntityType.DOCUMENT, document_id, data.to_status, current.actor_id, comment=data.comment)
    return _present(doc)


# ── Checkout / checkin ────────────────────────────────────────────────────────

@router.post("/documents/{document_id}/checkout", response_model=DocumentRead)
async def checkout_document(
    document_id: uuid.UUID,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.checkout_document(store, document_id, current.actor_id))


@router.post("/documents/{document_id}/checkin", response_model=DocumentRead)
async def checkin_document(
    document_id: uuid.UUID,
    data: CheckinRequest,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    doc = await service.checkin_document(store, document_id, current.actor_id, data.content, data.change_summary)
    return _present(doc)


@router.get("/documents/{document_id}/versions", response_model=list[DocumentVersionRead])
async def list_document_versions(
    document_id: uuid.UUID,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    await service.get_document(store, document_id)
    return await service.list_versions(store, document_id)


@router.get("/documents/{document_id}/activities", response_model=list[ActivityRead])
async def document_activities(
    document_id: uuid.UUID,
    order: SortOrder,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    await service.get_document(store, document_id)
    return await list_activities(store, document_id, order)
