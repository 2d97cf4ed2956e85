from fastapi import APIRouter, Depends

from foodsafe.core.notifications.service import Notifier
from foodsafe.core.workflow import scheduler
from foodsafe.core.workflow.schemas import SweepReportRead, SweepRequest
from foodsafe.core.workflow.store import RecordStore
from foodsafe.dependencies import CurrentActor, get_current_actor, get_notifier, get_store

router = APIRouter(tags=["automation"])


@router.get("/automation/sweeps")
async def list_sweeps(_: CurrentActor = Depends(get_current_actor)):
    return {"sweeps": list(scheduler.SWEEPS)}


@router.post("/automation/sweeps/{name}", response_model=SweepReportRead)
async def run_sweep(
    name: str,
    data: SweepRequest | None = None,
    store: RecordStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    _: CurrentActor = Depends(get_current_actor),
):
    data = data or SweepRequest()
    return await scheduler.run_sweep(
        name, store, notifier, batch_size=data.batch_size, start_after=data.start_after,
    )
