import uuid

import pytest

from foodsafe.core.activity.service import (
    ActionType,
    SortOrder,
    list_activities,
    record_activity,
    record_activity_once,
)
from foodsafe.core.workflow.engine import apply_transition, create_record
from foodsafe.core.workflow.errors import ValidationError
from foodsafe.core.workflow.statuses import EntityType
from foodsafe.core.workflow.store import SqlAlchemyRecordStore


async def _log(store, record_id, now, **extra):
    return await record_activity(
        store,
        record_id=record_id,
        entity_type=EntityType.CAPA,
        action_type=ActionType.UPDATED,
        description="edited",
        performed_by="auditor-1",
        now=now,
        **extra,
    )


async def test_creation_and_n_transitions_give_n_plus_one_entries(store, actor, now):
    capa = await create_record(store, "capa", {"title": "Recalibrate metal detector"}, actor, now=now)
    for target in ("In Progress", "Closed", "Verified"):
        await apply_transition(store, "capa", capa["id"], target, actor, now=now)

    entries = await list_activities(store, capa["id"], SortOrder.ASC)
    assert len(entries) == 1 + 3
    assert [e["action_type"] for e in entries] == [ActionType.CREATED] + [ActionType.STATUS_CHANGE] * 3
    assert [e["new_status"] for e in entries] == ["Open", "In Progress", "Closed", "Pending Verification"]
    stamps = [e["performed_at"] for e in entries]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)


async def test_same_clock_reading_still_increases(store, now):
    record_id = uuid.uuid4()
    first = await _log(store, record_id, now)
    second = await _log(store, record_id, now)
    assert second["performed_at"] > first["performed_at"]


async def test_clock_going_backwards_does_not_reorder(store, now):
    record_id = uuid.uuid4()
    first = await _log(store, record_id, now)
    second = await _log(store, record_id, now.replace(hour=8))
    assert second["performed_at"] > first["performed_at"]


async def test_descending_is_newest_first(store, now):
    record_id = uuid.uuid4()
    ids = [(await _log(store, record_id, now))["id"] for _ in range(3)]
    entries = await list_activities(store, record_id, "desc")
    assert [e["id"] for e in entries] == ids[::-1]


async def test_list_is_scoped_to_record(store, now):
    await _log(store, uuid.uuid4(), now)
    assert await list_activities(store, uuid.uuid4(), SortOrder.ASC) == []


async def test_order_must_be_explicit(store):
    with pytest.raises(ValidationError):
        await list_activities(store, uuid.uuid4(), "sideways")


async def test_performed_by_required(store, now):
    with pytest.raises(ValidationError):
        await record_activity(
            store, record_id=uuid.uuid4(), entity_type="capa", action_type=ActionType.UPDATED,
            description="x", performed_by="", now=now,
        )


async def test_metadata_is_kept(store, now):
    entry = await _log(store, uuid.uuid4(), now, metadata={"fields": ["title"]})
    assert entry["meta"] == {"fields": ["title"]}


async def test_activities_are_append_only(store, now):
    entry = await _log(store, uuid.uuid4(), now)
    with pytest.raises(ValidationError):
        await store.update("activities", entry["id"], {"action_description": "rewritten"})


async def test_sqlalchemy_store_refuses_activity_updates():
    store = SqlAlchemyRecordStore(session=None)
    with pytest.raises(ValidationError):
        await store.update("activities", uuid.uuid4(), {"action_description": "rewritten"})


async def test_record_once_dedupes(store, now):
    record_id = uuid.uuid4()
    fields = dict(
        record_id=record_id, entity_type="capa", action_type=ActionType.DEADLINE_WARNING,
        description="due soon", performed_by="System", now=now,
    )
    assert await record_activity_once(store, "deadline_warning:x:2026-03-02", **fields)
    assert not await record_activity_once(store, "deadline_warning:x:2026-03-02", **fields)
    assert len(await list_activities(store, record_id, "asc")) == 1
