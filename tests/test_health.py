import asyncio

import pytest

from foodsafe.core.health.service import MODULE_TABLES, HealthService, store_checks
from foodsafe.core.workflow.errors import NotFoundError


async def _ok():
    return None


async def _slow():
    await asyncio.sleep(1)


async def _broken():
    raise RuntimeError("replica lagging")


async def test_checks_are_isolated():
    service = HealthService({"capa": _ok, "documents": _broken, "complaints": _slow}, timeout=0.05)
    results = {m.name: m for m in await service.check_all()}
    assert results["capa"].healthy
    assert not results["documents"].healthy
    assert results["documents"].detail == "replica lagging"
    assert not results["complaints"].healthy
    assert results["complaints"].detail == "TimeoutError"


async def test_unknown_check():
    with pytest.raises(NotFoundError):
        await HealthService({}).check("billing")


async def test_store_checks_query_each_table(store):
    service = HealthService(store_checks(store))
    results = await service.check_all()
    assert all(m.healthy for m in results)
    assert {("query", table) for table in MODULE_TABLES.values()} <= set(store.calls)
