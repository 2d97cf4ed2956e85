from fastapi import APIRouter, Depends
from pydantic import BaseModel

from foodsafe.core.health.service import HealthService
from foodsafe.dependencies import get_health_service

router = APIRouter(tags=["health"])


class ModuleHealthRead(BaseModel):
    model_config = {"from_attributes": True}
    name: str
    healthy: bool
    latency_ms: float
    detail: str | None


class HealthReport(BaseModel):
    status: str
    modules: list[ModuleHealthRead]


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/health/modules", response_model=HealthReport)
async def module_health(health_service: HealthService = Depends(get_health_service)):
    modules = await health_service.check_all()
    status = "ok" if all(m.healthy for m in modules) else "degraded"
    return HealthReport(status=status, modules=[ModuleHealthRead.model_validate(m) for m in modules])
