import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from foodsafe.core.capa.router import router as capa_router
from foodsafe.core.complaints.router import router as complaints_router
from foodsafe.core.documents.router import router as documents_router
from foodsafe.core.health.router import router as health_router
from foodsafe.core.nonconformance.router import router as nonconformance_router
from foodsafe.core.notifications.router import router as notifications_router
from foodsafe.core.workflow.errors import (
    ConflictError,
    ConstraintViolation,
    NotFoundError,
    StoreError,
    TransportError,
    ValidationError,
    WorkflowError,
)
from foodsafe.core.workflow.router import router as automation_router
from foodsafe.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ── Error handlers ────────────────────────────────────────────────────────────

_STATUS_FOR = [
    (ValidationError, 422),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ConstraintViolation, status.HTTP_409_CONFLICT),
    (TransportError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    for exc_type, code in _STATUS_FOR:
        if isinstance(exc, exc_type):
            break
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, TransportError):
        logger.warning("Store unavailable on %s %s: %s", request.method, request.url.path, exc.reason)
        detail = "Service temporarily unavailable, please retry"
    elif isinstance(exc, StoreError) and not isinstance(exc, ConstraintViolation):
        logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
        detail = "Internal error"
    else:
        detail = exc.reason
    return JSONResponse(status_code=code, content={"detail": detail})


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)
    app = FastAPI(
        title="FoodSafe Compliance API",
        version="0.1.0",
        docs_url="/docs" if settings.APP_DEBUG else None,
        redoc_url="/redoc" if settings.APP_DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.APP_DEBUG else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WorkflowError, workflow_error_handler)

    app.include_router(health_router)
    app.include_router(capa_router)
    app.include_router(nonconformance_router)
    app.include_router(complaints_router)
    app.include_router(documents_router)
    app.include_router(notifications_router)
    app.include_router(automation_router)

    return app


app = create_app()
