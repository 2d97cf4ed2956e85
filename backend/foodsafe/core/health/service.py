"""
Module health checks.

A HealthService is built with the checks it should run; nothing is
registered globally. Each check is an async callable that raises on failure.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from foodsafe.core.workflow.errors import NotFoundError
from foodsafe.core.workflow.store import RecordStore

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], Awaitable[None]]

MODULE_TABLES = {
    "capa": "capas",
    "non_conformance": "non_conformances",
    "complaints": "complaints",
    "documents": "documents",
    "activities": "activities",
    "notifications": "notifications",
}


@dataclass
class ModuleHealth:
    name: str
    healthy: bool
    latency_ms: float
    detail: str | None = None


class HealthService:
    def __init__(self, checks: dict[str, HealthCheck], timeout: float = 5.0):
        self.checks = dict(checks)
        self.timeout = timeout

    async def check(self, name: str) -> ModuleHealth:
        try:
            check = self.checks[name]
        except KeyError:
            raise NotFoundError(f"No health check named {name!r}") from None
        started = time.perf_counter()
        try:
            await asyncio.wait_for(check(), timeout=self.timeout)
        except Exception as exc:
            logger.warning("Health check %s failed: %s", name, exc)
            return ModuleHealth(name, False, _elapsed_ms(started), str(exc) or exc.__class__.__name__)
        return ModuleHealth(name, True, _elapsed_ms(started))

    async def check_all(self) -> list[ModuleHealth]:
        # Sequential: the store's session does not allow concurrent queries.
        return [await self.check(name) for name in self.checks]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def store_checks(store: RecordStore) -> dict[str, HealthCheck]:
    """One check per module: can its table be read."""
    def probe(table: str) -> HealthCheck:
        async def check() -> None:
            await store.query(table, limit=1)
        return check
    return {name: probe(table) for name, table in MODULE_TABLES.items()}
