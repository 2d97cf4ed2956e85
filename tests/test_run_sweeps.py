import signal
import time
from contextlib import asynccontextmanager
from datetime import timedelta

from foodsafe.core.workflow.errors import TransportError
from foodsafe.db import run_sweeps
from foodsafe.db.base import utcnow


def _patch_session(monkeypatch, store):
    @asynccontextmanager
    async def session():
        yield None

    monkeypatch.setattr(run_sweeps, "get_session", session)
    monkeypatch.setattr(run_sweeps, "SqlAlchemyRecordStore", lambda _session: store)


def test_stop_flag():
    flag = run_sweeps.StopFlag()
    assert not flag()
    flag.request()
    assert flag()

    timed = run_sweeps.StopFlag(max_seconds=60)
    assert not timed()
    timed.deadline = time.monotonic() - 1
    assert timed()


async def test_run_selected_sweep(monkeypatch, store):
    capa = store.put("capas", {
        "title": "Water test overdue", "status": "In Progress", "due_date": utcnow() - timedelta(days=1), "created_by": "qa",
    })
    _patch_session(monkeypatch, store)

    code = await run_sweeps.run(["overdue_capas"], None, None, run_sweeps.StopFlag())
    assert code == 0
    assert store.tables["capas"][capa["id"]]["status"] == "Overdue"
    assert store.all("notifications")[0]["user_id"] == "qa"


async def test_run_reports_failures(monkeypatch, store):
    store.fail_next("query", "documents", TransportError("db gone"))
    _patch_session(monkeypatch, store)
    code = await run_sweeps.run(["expired_documents", "overdue_capas"], None, None, run_sweeps.StopFlag())
    assert code == 1


async def test_run_stops_before_next_sweep(monkeypatch, store):
    _patch_session(monkeypatch, store)
    flag = run_sweeps.StopFlag()
    flag.request()
    assert await run_sweeps.run(list(run_sweeps.SWEEPS), None, None, flag) == 0
    assert store.calls == []


def test_main_stops_cleanly_on_sigint_and_sigterm(monkeypatch):
    handlers = {}
    monkeypatch.setattr(run_sweeps.signal, "signal", lambda signum, handler: handlers.setdefault(signum, handler))

    async def fake_run(names, batch_size, start_after, stop):
        assert names == ["overdue_capas"]
        return 0

    monkeypatch.setattr(run_sweeps, "run", fake_run)
    assert run_sweeps.main(["--sweep", "overdue_capas"]) == 0
    assert set(handlers) == {signal.SIGINT, signal.SIGTERM}

    stop = handlers[signal.SIGINT].__self__
    assert not stop()
    handlers[signal.SIGINT](signal.SIGINT, None)
    assert stop()
