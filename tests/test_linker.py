import uuid
from datetime import timedelta

import pytest

from fakes import InMemoryRecordStore
from foodsafe.core.activity.service import ActionType, SortOrder, list_activities
from foodsafe.core.workflow.engine import apply_transition, create_record, get_record
from foodsafe.core.workflow.errors import ConflictError, NotFoundError, TransportError, ValidationError
from foodsafe.core.workflow.linker import derive_priority, generate_capa, link_capa, raise_priority
from foodsafe.core.workflow.statuses import CapaPriority, EntityType


class StaleReadStore(InMemoryRecordStore):
    """The first CAPA lookup misses a row another worker is about to commit."""

    hide_next_capa_lookup = True

    async def query(self, table, filters=None, **kwargs):
        if table == "capas" and self.hide_next_capa_lookup:
            self.hide_next_capa_lookup = False
            return []
        return await super().query(table, filters, **kwargs)


async def _nc(store, actor, now, **fields):
    return await create_record(store, "non_conformance", {"title": "Foreign body in flour", **fields}, actor, now=now)


async def _generated(store, record_id):
    entries = await list_activities(store, record_id, SortOrder.ASC)
    return [e for e in entries if e["action_type"] == ActionType.CAPA_GENERATED]


async def test_generate_creates_open_capa_and_back_reference(store, actor, now):
    nc = await _nc(store, actor, now, assigned_to="line-supervisor")
    capa = await generate_capa(store, "NonConformance", nc["id"], actor, now=now)

    assert capa["status"] == "Open"
    assert capa["source"] == "non_conformance"
    assert capa["source_id"] == nc["id"]
    assert capa["created_by"] == actor
    assert capa["assigned_to"] == "line-supervisor"
    assert capa["automatically_generated"] is False
    assert capa["title"] == "CAPA for Non-Conformance: Foreign body in flour"
    assert (await get_record(store, "non_conformance", nc["id"]))["capa_id"] == capa["id"]


async def test_generate_twice_returns_same_capa(store, actor, now):
    nc = await _nc(store, actor, now)
    first = await generate_capa(store, "non_conformance", nc["id"], actor, now=now)
    second = await generate_capa(store, "non_conformance", nc["id"], actor, now=now)

    assert first["id"] == second["id"]
    assert len(store.all("capas")) == 1
    linked = [r for r in store.all("non_conformances") if r["capa_id"] == first["id"]]
    assert len(linked) == 1
    assert len(await _generated(store, first["id"])) == 1
    assert len(await _generated(store, nc["id"])) == 1


async def test_retry_after_back_reference_failure_converges(store, actor, now):
    nc = await _nc(store, actor, now)
    store.fail_next("update", "non_conformances", TransportError("connection reset"))
    with pytest.raises(TransportError):
        await generate_capa(store, "non_conformance", nc["id"], actor, now=now)
    assert len(store.all("capas")) == 1
    assert (await get_record(store, "non_conformance", nc["id"]))["capa_id"] is None

    capa = await generate_capa(store, "non_conformance", nc["id"], actor, now=now)
    assert len(store.all("capas")) == 1
    assert (await get_record(store, "non_conformance", nc["id"]))["capa_id"] == capa["id"]
    assert len(await _generated(store, capa["id"])) == 1


async def test_retry_after_activity_failure_converges(store, actor, now):
    nc = await _nc(store, actor, now)
    store.fail_next("insert", "activities", TransportError("timeout"))
    with pytest.raises(TransportError):
        await generate_capa(store, "non_conformance", nc["id"], actor, now=now)

    capa = await generate_capa(store, "non_conformance", nc["id"], actor, now=now)
    assert len(store.all("capas")) == 1
    assert len(await _generated(store, capa["id"])) == 1
    assert len(await _generated(store, nc["id"])) == 1


async def test_concurrent_insert_reuses_winner(actor, now):
    store = StaleReadStore()
    store.hide_next_capa_lookup = False  # let setup see the table
    nc = await _nc(store, actor, now)
    winner = store.put("capas", {
        "title": "Created by another worker", "source": "non_conformance", "source_id": nc["id"], "created_by": actor,
    })
    store.hide_next_capa_lookup = True

    capa = await generate_capa(store, "non_conformance", nc["id"], actor, now=now)
    assert capa["id"] == winner["id"]
    assert len(store.all("capas")) == 1
    assert (await get_record(store, "non_conformance", nc["id"]))["capa_id"] == winner["id"]


async def test_manually_linked_capa_is_returned(store, actor, now):
    nc = await _nc(store, actor, now)
    manual = await create_record(store, "capa", {"title": "Supplier audit follow-up"}, actor, now=now)
    await link_capa(store, nc["id"], manual["id"], actor, now=now)

    capa = await generate_capa(store, "non_conformance", nc["id"], actor, now=now)
    assert capa["id"] == manual["id"]
    assert len(store.all("capas")) == 1


async def test_back_reference_conflict(store, actor, now):
    nc = await _nc(store, actor, now)
    other = store.put("capas", {"title": "Other", "created_by": actor})

    # someone links a different CAPA between our read and our write
    original_update = store.update

    async def update(table, record_id, patch, *, only_if=None):
        if table == "non_conformances" and "capa_id" in patch:
            store.tables[table][record_id]["capa_id"] = other["id"]
        return await original_update(table, record_id, patch, only_if=only_if)

    store.update = update
    with pytest.raises(ConflictError):
        await generate_capa(store, "non_conformance", nc["id"], actor, now=now)


async def test_complaint_source(store, actor, now):
    complaint = await create_record(
        store, "complaint", {"title": "Glass in jar", "category": "Foreign_Material", "priority": "High"}, actor, now=now,
    )
    capa = await generate_capa(store, EntityType.COMPLAINT, complaint["id"], actor, now=now)
    assert capa["source"] == "complaint"
    assert capa["priority"] == "Critical"
    assert capa["due_date"] == now + timedelta(days=7)
    assert (await get_record(store, "complaint", complaint["id"]))["capa_id"] == capa["id"]


async def test_automatic_generation_without_actor_uses_system(store, actor, now):
    nc = await _nc(store, actor, now)
    capa = await generate_capa(store, "non_conformance", nc["id"], None, automatic=True, now=now)
    assert capa["created_by"] == "System"
    assert capa["automatically_generated"] is True
    assert (await _generated(store, capa["id"]))[0]["performed_by"] == "System"


async def test_user_generation_requires_real_actor(store, actor, now):
    nc = await _nc(store, actor, now)
    with pytest.raises(ValidationError):
        await generate_capa(store, "non_conformance", nc["id"], "System", now=now)


async def test_unsupported_and_missing_sources(store, actor, now):
    with pytest.raises(ValidationError):
        await generate_capa(store, "document", uuid.uuid4(), actor, now=now)
    with pytest.raises(ValidationError):
        await generate_capa(store, "supplier", uuid.uuid4(), actor, now=now)
    with pytest.raises(NotFoundError):
        await generate_capa(store, "non_conformance", uuid.uuid4(), actor, now=now)
    assert store.all("capas") == []


def test_priority_derivation():
    assert derive_priority("non_conformance", {"priority": None, "status": "On Hold"}) is CapaPriority.MEDIUM
    assert derive_priority("non_conformance", {"priority": "High", "status": "Under Review"}) is CapaPriority.CRITICAL
    assert derive_priority("complaint", {"priority": "Low", "category": "Food_Safety"}) is CapaPriority.MEDIUM
    assert derive_priority("complaint", {"priority": "Medium", "category": "Packaging", "status": "Escalated"}) is CapaPriority.HIGH
    assert derive_priority("complaint", {"priority": "Medium", "category": "Packaging", "status": "New"}) is CapaPriority.MEDIUM
    assert raise_priority(CapaPriority.CRITICAL) is CapaPriority.CRITICAL


async def test_due_date_follows_priority(store, actor, now):
    nc = await _nc(store, actor, now, priority="Low")
    capa = await generate_capa(store, "non_conformance", nc["id"], actor, now=now)
    assert capa["priority"] == "Low"
    assert capa["due_date"] == now + timedelta(days=30)


# ── link_capa ──

async def test_link_capa_writes_both_activities(store, actor, now):
    nc = await _nc(store, actor, now)
    capa = await create_record(store, "capa", {"title": "Pest control review"}, actor, now=now)
    linked = await link_capa(store, nc["id"], capa["id"], actor, now=now)
    assert linked["capa_id"] == capa["id"]

    for record_id in (nc["id"], capa["id"]):
        entries = await list_activities(store, record_id, SortOrder.ASC)
        assert [e["action_type"] for e in entries].count(ActionType.CAPA_LINKED) == 1


async def test_link_capa_is_idempotent(store, actor, now):
    nc = await _nc(store, actor, now)
    capa = await create_record(store, "capa", {"title": "Pest control review"}, actor, now=now)
    await link_capa(store, nc["id"], capa["id"], actor, now=now)
    await link_capa(store, nc["id"], capa["id"], actor, now=now)
    entries = await list_activities(store, nc["id"], SortOrder.ASC)
    assert [e["action_type"] for e in entries].count(ActionType.CAPA_LINKED) == 1


async def test_link_capa_refuses_second_capa(store, actor, now):
    nc = await _nc(store, actor, now)
    first = await create_record(store, "capa", {"title": "First"}, actor, now=now)
    second = await create_record(store, "capa", {"title": "Second"}, actor, now=now)
    await link_capa(store, nc["id"], first["id"], actor, now=now)
    with pytest.raises(ConflictError):
        await link_capa(store, nc["id"], second["id"], actor, now=now)


async def test_link_capa_refuses_closed_capa(store, actor, now):
    nc = await _nc(store, actor, now)
    capa = await create_record(store, "capa", {"title": "Done already"}, actor, now=now)
    await apply_transition(store, "capa", capa["id"], "In Progress", actor, now=now)
    await apply_transition(store, "capa", capa["id"], "Closed", actor, now=now)
    with pytest.raises(ConflictError):
        await link_capa(store, nc["id"], capa["id"], actor, now=now)


async def test_link_capa_missing_records(store, actor, now):
    nc = await _nc(store, actor, now)
    with pytest.raises(NotFoundError):
        await link_capa(store, nc["id"], uuid.uuid4(), actor, now=now)
    with pytest.raises(NotFoundError):
        await link_capa(store, uuid.uuid4(), uuid.uuid4(), actor, now=now)
