import logging
import uuid

from foodsafe.core.nonconformance.schemas import NonConformanceCreate, NonConformanceUpdate
from foodsafe.core.workflow.engine import create_record, get_record, update_record
from foodsafe.core.workflow.errors import ValidationError
from foodsafe.core.workflow.linker import generate_capa
from foodsafe.core.workflow.statuses import PRIORITIES, EntityType, parse_status, storage_variants
from foodsafe.core.workflow.store import RecordStore

logger = logging.getLogger(__name__)


def _check_quantities(quantity: float | None, on_hold: float | None) -> None:
    if quantity is not None and on_hold is not None and on_hold > quantity:
        raise ValidationError("quantity_on_hold cannot exceed quantity")


def _priority(raw: str | None) -> str | None:
    return PRIORITIES.to_storage(PRIORITIES.parse(raw)) if raw else None


async def create_nc(store: RecordStore, data: NonConformanceCreate, actor: str) -> dict:
    _check_quantities(data.quantity, data.quantity_on_hold)
    row = data.model_dump(exclude={"generate_capa"})
    row["priority"] = _priority(data.priority)
    nc = await create_record(store, EntityType.NON_CONFORMANCE, row, actor)
    if data.generate_capa:
        capa = await generate_capa(store, EntityType.NON_CONFORMANCE, nc["id"], actor, automatic=True)
        nc = await get_nc(store, nc["id"])
        logger.info("Non-Conformance %s created with CAPA %s", nc["id"], capa["id"])
    return nc


async def get_nc(store: RecordStore, nc_id: uuid.UUID) -> dict:
    return await get_record(store, EntityType.NON_CONFORMANCE, nc_id)


async def list_ncs(store: RecordStore, status: str | None = None) -> list[dict]:
    filters: dict = {}
    if status:
        filters["status"] = storage_variants(EntityType.NON_CONFORMANCE, parse_status(EntityType.NON_CONFORMANCE, status))
    return await store.query("non_conformances", filters, order_by="created_at", descending=True)


async def update_nc(store: RecordStore, nc_id: uuid.UUID, data: NonConformanceUpdate, actor: str) -> dict:
    changes = data.model_dump(exclude_unset=True)
    if changes.get("title") is None:
        changes.pop("title", None)
    if "priority" in changes:
        changes["priority"] = _priority(changes["priority"])
    if "quantity" in changes or "quantity_on_hold" in changes:
        current = await get_nc(store, nc_id)
        _check_quantities(
            changes.get("quantity", current.get("quantity")),
            changes.get("quantity_on_hold", current.get("quantity_on_hold")),
        )
    return await update_record(store, EntityType.NON_CONFORMANCE, nc_id, changes, actor)
