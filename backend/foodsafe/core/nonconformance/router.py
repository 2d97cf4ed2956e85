import uuid
from fastapi import APIRouter, Depends

from foodsafe.core.activity.service import SortOrder, list_activities
from foodsafe.core.capa.schemas import CapaRead
from foodsafe.core.capa.service import present as present_capa
from foodsafe.core.nonconformance import service
from foodsafe.core.nonconformance.schemas import (
    LinkCapaRequest, NonConformanceCreate, NonConformanceRead, NonConformanceUpdate,
)
from foodsafe.core.workflow.engine import apply_transition
from foodsafe.core.workflow.linker import generate_capa, link_capa
from foodsafe.core.workflow.schemas import ActivityRead, TransitionRequest
from foodsafe.core.workflow.statuses import EntityType, canonicalize
from foodsafe.core.workflow.store import RecordStore
from foodsafe.dependencies import CurrentActor, get_current_actor, get_store

router = APIRouter(tags=["nonconformances"])


def _present(nc: dict) -> dict:
    return canonicalize(EntityType.NON_CONFORMANCE, nc)


@router.post("/non-conformances", response_model=NonConformanceRead, status_code=201)
async def create_nc(
    data: NonConformanceCreate,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    if data.assigned_to is None:
        data.assigned_to = current.actor_id
    return _present(await service.create_nc(store, data, current.actor_id))


@router.get("/non-conformances", response_model=list[NonConformanceRead])
async def list_ncs(
    status: str | None = None,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    return [_present(nc) for nc in await service.list_ncs(store, status)]


@router.get("/non-conformances/{nc_id}", response_model=NonConformanceRead)
async def get_nc(
    nc_id: uuid.UUID,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.get_nc(store, nc_id))


@router.patch("/non-conformances/{nc_id}", response_model=NonConformanceRead)
async def update_nc(
    nc_id: uuid.UUID,
    data: NonConformanceUpdate,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return _present(await service.update_nc(store, nc_id, data, current.actor_id))


@router.post("/non-conformances/{nc_id}/transition", response_model=NonConformanceRead)
async def transition_nc(
    nc_id: uuid.UUID,
    data: TransitionRequest,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    nc = await apply_transition(store, EntityType.NON_CONFORMANCE, nc_id, data.to_status, current.actor_id, comment=data.comment)
    return _present(nc)


@router.post("/non-conformances/{nc_id}/generate-capa", response_model=CapaRead)
async def generate_nc_capa(
    nc_id: uuid.UUID,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return present_capa(await generate_capa(store, EntityType.NON_CONFORMANCE, nc_id, current.actor_id))


@router.post("/non-conformances/{nc_id}/link-capa", response_model=NonConformanceRead)
async def link_nc_capa(
    nc_id: uuid.UUID,
    data: LinkCapaRequest,
    store: RecordStore = Depends(get_store),
    current: CurrentActor = Depends(get_current_actor),
):
    return _present(await link_capa(store, nc_id, data.capa_id, current.actor_id))


@router.get("/non-conformances/{nc_id}/activities", response_model=list[ActivityRead])
async def nc_activities(
    nc_id: uuid.UUID,
    order: SortOrder,
    store: RecordStore = Depends(get_store),
    _: CurrentActor = Depends(get_current_actor),
):
    await service.get_nc(store, nc_id)
    return await list_activities(store, nc_id, order)
