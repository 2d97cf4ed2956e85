import uuid
from fastapi import APIRouter, Depends

from foodsafe.core.activity.service import SortOrder, list_activities
from foodsafe.core.capa.schemas import CapaRead
from foodsafe.core.capa.service import present as present_capa
from foodsafe.core.complaints import service
from foodsafe.core.complaints.schemas import ComplaintCreate, ComplaintRead, ComplaintUpdate
from foodsafe.core.workflow.engine import apply_transition
from foodsafe.core.workflow.linker import generate_capa
from foodsafe.core.workflow.schemas import ActivityRead, TransitionRequest
from foodsafe.core.workflow.statuses import EntityType, canonicalize
from foodsafe.core.workflow.store import RecordStore
from foodsafe.dependencies import CurrentActor, get_current_actor, get_store

router = APIRouter(tags=["complaints"])


def _present(complaint: dict) -> dict:
    return canonicalize(EntityType.COMPLAINT, complaint)


@router.post("/complaints", response_model=ComplaintRead, status_code=201)
async def create_complaint(
    data: ComplaintCreate,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.create_complaint(store, data, current.actor_id))


@router.get("/complaints", response_model=list[ComplaintRead])
async def list_complaints(
    status: str | None = None,
    category: str | None = None,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    return [_present(c) for c in await service.list_complaints(store, status, category)]


@router.get("/complaints/{complaint_id}", response_model=ComplaintRead)
async def get_complaint(
    complaint_id: uuid.UUID,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.get_complaint(store, complaint_id))


@router.patch("/complaints/{complaint_id}", response_model=ComplaintRead)
async def update_complaint(
    complaint_id: uuid.UUID,
    data: ComplaintUpdate,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.update_complaint(store, complaint_id, data, current.actor_id))


@router.post("/complaints/{complaint_id}/transition", response_model=ComplaintRead)
async def transition_complaint(
    complaint_id: uuid.UUID,
    data: TransitionRequest,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    complaint = await apply_transition(
        store, EntityType.COMPLAINT, complaint_id, data.to_status, current.actor_id, comment=data.comment,
    )
    return _present(complaint)


@router.post("/complaints/{complaint_id}/generate-capa", response_model=CapaRead)
async def generate_complaint_capa(
    complaint_id: uuid.UUID,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return present_capa(await generate_capa(store, EntityType.COMPLAINT, complaint_id, current.actor_id))


@router.get("/complaints/{complaint_id}/activities", response_model=list[ActivityRead])
async def complaint_activities(
    complaint_id: uuid.UUID,
    order: SortOrder,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    await service.get_complaint(store, complaint_id)
    return await list_activities(store, complaint_id, order)
