import uuid
from fastapi import APIRouter, Depends

from foodsafe.core.activity.service import SortOrder, list_activities
from foodsafe.core.capa import service
from foodsafe.core.capa.schemas import CapaCreate, CapaRead, CapaUpdate, EffectivenessRequest
from foodsafe.core.workflow.engine import apply_transition
from foodsafe.core.workflow.schemas import ActivityRead, TransitionRequest
from foodsafe.core.workflow.statuses import EntityType
from foodsafe.core.workflow.store import RecordStore
from foodsafe.dependencies import CurrentActor, get_current_actor, get_store

router = APIRouter(tags=["capa"])


@router.post("/capas", response_model=CapaRead, status_code=201)
async def create_capa(data: CapaCreate, store: RecordStore = Depends(get_store), current: CurrentActor = Depends(get_current_actor)):
    return service.present(await service.create_capa(store, data, current.actor_id))


@router.get("/capas", response_model=list[CapaRead])
async def list_capas(status: str | None = None, source_id: uuid.UUID | None = None, store: RecordStore = Depends(get_store), _: CurrentActor = Depends(get_current_actor)):
    return [service.present(c) for c in await service.list_capas(store, status, source_id)]


@router.get("/capas/{capa_id}", response_model=CapaRead)
async def get_capa(capa_id: uuid.UUID, store: RecordStore = Depends(get_store), _: CurrentActor = Depends(get_current_actor)):
    return service.present(await service.get_capa(store, capa_id))


@router.patch("/capas/{capa_id}", response_model=CapaRead)
async def update_capa(capa_id: uuid.UUID, data: CapaUpdate, store: RecordStore = Depends(get_store), current: CurrentActor = Depends(get_current_actor)):
    return service.present(await service.update_capa(store, capa_id, data, current.actor_id))


@router.post("/capas/{capa_id}/transition", response_model=CapaRead)
async def transition_capa(capa_id: uuid.UUID, data: TransitionRequest, store: RecordStore = Depends(get_store), current: CurrentActor = Depends(get_current_actor)):
    capa = await apply_transition(store, EntityType.CAPA, capa_id, data.to_status, current.actor_id, comment=data.comment)
    return service.present(capa)


@router.post("/capas/{capa_id}/effectiveness", response_model=CapaRead)
async def rate_effectiveness(capa_id: uuid.UUID, data: EffectivenessRequest, store: RecordStore = Depends(get_store), current: CurrentActor = Depends(get_current_actor)):
    capa = await service.rate_effectiveness(store, capa_id, data.rating, current.actor_id, data.notes)
    return service.present(capa)


@router.get("/capas/{capa_id}/activities", response_model=list[ActivityRead])
async def capa_activities(capa_id: uuid.UUID, order: SortOrder, store: RecordStore = Depends(get_store), _: CurrentActor = Depends(get_current_actor)):
    await service.get_capa(store, capa_id)
    return await list_activities(store, capa_id, order)
