"""
Escalation / automation scheduler.

Time-driven sweeps, each independent of the others and safe to re-run: a
second run over the same data changes nothing and logs nothing new. Sweeps
only move records along automation transitions and append Activities; all
of their Activities are performed by ``SYSTEM_ACTOR``.

Records are read in id order, ``batch_size`` at a time. ``start_after``
resumes from a previous report's ``last_processed_id`` and ``should_stop``
is polled between records so a long run can be interrupted cleanly.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable

from foodsafe.core.activity.service import SYSTEM_ACTOR, ActionType, record_activity_once
from foodsafe.core.notifications.service import Notifier
from foodsafe.core.workflow.engine import apply_transition
from foodsafe.core.workflow.errors import ConflictError, ValidationError
from foodsafe.core.workflow.statuses import (
    CapaStatus,
    DocumentStatus,
    EntityType,
    NCStatus,
    from_storage,
    storage_variants,
    to_storage,
)
from foodsafe.core.workflow.store import RecordStore
from foodsafe.db.base import utcnow
from foodsafe.settings import get_settings

logger = logging.getLogger(__name__)

OVERDUE_FROM = (CapaStatus.OPEN, CapaStatus.IN_PROGRESS)


@dataclass
class SweepFailure:
    record_id: uuid.UUID
    error: str


@dataclass
class SweepReport:
    name: str
    processed: int = 0
    changed: int = 0
    failures: list[SweepFailure] = field(default_factory=list)
    last_processed_id: uuid.UUID | None = None
    stopped_early: bool = False


def is_overdue(capa: dict, now: datetime | None = None) -> bool:
    """Read-side overdue check; agrees with what the overdue sweep writes."""
    status = from_storage(EntityType.CAPA, capa.get("status"))
    if status is CapaStatus.OVERDUE:
        return True
    due = capa.get("due_date")
    return status in OVERDUE_FROM and due is not None and due < (now or utcnow())


def effective_status(capa: dict, now: datetime | None = None) -> CapaStatus:
    if is_overdue(capa, now):
        return CapaStatus.OVERDUE
    return from_storage(EntityType.CAPA, capa.get("status"))


async def _batches(
    store: RecordStore,
    table: str,
    filters: dict,
    batch_size: int,
    start_after: uuid.UUID | None,
) -> AsyncIterator[list[dict]]:
    after = start_after
    while True:
        rows = await store.query(table, filters, order_by="id", limit=batch_size, after=after)
        if not rows:
            return
        yield rows
        if len(rows) < batch_size:
            return
        after = rows[-1]["id"]


async def _sweep(
    name: str,
    store: RecordStore,
    table: str,
    filters: dict,
    handle: Callable[[dict], Awaitable[bool]],
    *,
    batch_size: int | None,
    start_after: uuid.UUID | None,
    should_stop: Callable[[], bool] | None,
) -> SweepReport:
    report = SweepReport(name=name)
    batch_size = batch_size or get_settings().SWEEP_BATCH_SIZE
    async for batch in _batches(store, table, filters, batch_size, start_after):
        for row in batch:
            if should_stop is not None and should_stop():
                report.stopped_early = True
                logger.info("Sweep %s stopped after %d records", name, report.processed)
                return report
            try:
                if await handle(row):
                    report.changed += 1
            except Exception as exc:
                logger.exception("Sweep %s failed on %s", name, row["id"])
                report.failures.append(SweepFailure(record_id=row["id"], error=str(exc)))
            report.processed += 1
            report.last_processed_id = row["id"]
    logger.info(
        "Sweep %s: processed=%d changed=%d failed=%d",
        name, report.processed, report.changed, len(report.failures),
    )
    return report


async def _notify(notifier: Notifier | None, user_id: str | None, message: str, kind: str, **context) -> None:
    if notifier is None or not user_id:
        return
    try:
        await notifier.notify(user_id, message, kind, **context)
    except Exception:
        # Notification delivery never rolls back a sweep's writes.
        logger.warning("Could not notify %s: %s", user_id, message, exc_info=True)


def _recipient(row: dict) -> str | None:
    recipient = row.get("assigned_to") or row.get("created_by")
    return None if recipient == SYSTEM_ACTOR else recipient


async def sweep_overdue_capas(
    store: RecordStore,
    notifier: Notifier | None = None,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    start_after: uuid.UUID | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> SweepReport:
    """Open / In Progress CAPAs past their due date become Overdue."""
    now = now or utcnow()

    async def handle(capa: dict) -> bool:
        if not is_overdue(capa, now) or from_storage(EntityType.CAPA, capa["status"]) is CapaStatus.OVERDUE:
            return False
        try:
            await apply_transition(store, EntityType.CAPA, capa["id"], CapaStatus.OVERDUE, SYSTEM_ACTOR, automated=True, now=now)
        except (ConflictError, ValidationError):
            # moved by a user since it was read; their status wins
            logger.info("CAPA %s changed during overdue sweep, skipped", capa["id"])
            return False
        await _notify(
            notifier, _recipient(capa), f"CAPA '{capa.get('title')}' is overdue", "escalation",
            record_id=capa["id"], entity_type=EntityType.CAPA.value,
        )
        return True

    filters = {"status": storage_variants(EntityType.CAPA, *OVERDUE_FROM), "due_date__lt": now}
    return await _sweep(
        "overdue_capas", store, "capas", filters, handle,
        batch_size=batch_size, start_after=start_after, should_stop=should_stop,
    )


async def sweep_effectiveness_reviews(
    store: RecordStore,
    notifier: Notifier | None = None,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    start_after: uuid.UUID | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> SweepReport:
    """One "effectiveness review due" Activity per Closed, unverified CAPA past its review date."""
    now = now or utcnow()
    review_days = get_settings().CAPA_EFFECTIVENESS_REVIEW_DAYS

    async def handle(capa: dict) -> bool:
        due = capa.get("effectiveness_review_due")
        if due is None and capa.get("completion_date") is not None:
            due = capa["completion_date"] + timedelta(days=review_days)
        if due is None or due > now:
            return False
        written = await record_activity_once(
            store,
            f"effectiveness_review_due:{capa['id']}",
            record_id=capa["id"],
            entity_type=EntityType.CAPA,
            action_type=ActionType.EFFECTIVENESS_REVIEW_DUE,
            description=f"Effectiveness review due for CAPA '{capa.get('title')}'",
            performed_by=SYSTEM_ACTOR,
            metadata={"completion_date": capa["completion_date"].isoformat() if capa.get("completion_date") else None},
            now=now,
        )
        if written:
            await _notify(
                notifier, _recipient(capa), f"Effectiveness review due for CAPA '{capa.get('title')}'", "review_due",
                record_id=capa["id"], entity_type=EntityType.CAPA.value,
            )
        return written

    filters = {
        "status": storage_variants(EntityType.CAPA, CapaStatus.CLOSED),
        "effectiveness_verified": False,
    }
    return await _sweep(
        "effectiveness_reviews", store, "capas", filters, handle,
        batch_size=batch_size, start_after=start_after, should_stop=should_stop,
    )


async def sweep_deadline_warnings(
    store: RecordStore,
    notifier: Notifier | None = None,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    start_after: uuid.UUID | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> SweepReport:
    """Warn once a day about Open / In Progress CAPAs due within the warning window."""
    now = now or utcnow()
    window = timedelta(days=get_settings().CAPA_DEADLINE_WARNING_DAYS)

    async def handle(capa: dict) -> bool:
        days_remaining = math.ceil((capa["due_date"] - now).total_seconds() / 86400)
        written = await record_activity_once(
            store,
            f"deadline_warning:{capa['id']}:{now.date().isoformat()}",
            record_id=capa["id"],
            entity_type=EntityType.CAPA,
            action_type=ActionType.DEADLINE_WARNING,
            description=f"CAPA due in {days_remaining} day(s)",
            performed_by=SYSTEM_ACTOR,
            metadata={"daysRemaining": days_remaining, "due_date": capa["due_date"].isoformat()},
            now=now,
        )
        if written:
            await _notify(
                notifier, _recipient(capa), f"CAPA '{capa.get('title')}' is due in {days_remaining} day(s)", "warning",
                record_id=capa["id"], entity_type=EntityType.CAPA.value,
            )
        return written

    filters = {
        "status": storage_variants(EntityType.CAPA, *OVERDUE_FROM),
        "due_date__gt": now,
        "due_date__lte": now + window,
    }
    return await _sweep(
        "deadline_warnings", store, "capas", filters, handle,
        batch_size=batch_size, start_after=start_after, should_stop=should_stop,
    )


async def sweep_stale_nonconformances(
    store: RecordStore,
    notifier: Notifier | None = None,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    start_after: uuid.UUID | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> SweepReport:
    """
    Escalate NCs left On Hold or Under Review too long.

    Level is "medium" past the threshold and "high" past twice the
    threshold. At most one escalation per NC per day.
    """
    now = now or utcnow()
    settings = get_settings()
    thresholds = {
        NCStatus.ON_HOLD: settings.NC_ON_HOLD_ESCALATION_DAYS,
        NCStatus.UNDER_REVIEW: settings.NC_UNDER_REVIEW_ESCALATION_DAYS,
    }

    async def handle(nc: dict) -> bool:
        status = from_storage(EntityType.NON_CONFORMANCE, nc["status"])
        threshold = thresholds.get(status)
        since = nc.get("status_changed_at") or nc.get("created_at")
        if threshold is None or since is None:
            return False
        days = (now - since).days
        if days <= threshold:
            return False
        level = "high" if days > threshold * 2 else "medium"
        status_name = to_storage(EntityType.NON_CONFORMANCE, status)
        message = f"Non-Conformance '{nc.get('title')}' has been {status_name} for {days} days"
        written = await record_activity_once(
            store,
            f"nc_escalation:{nc['id']}:{now.date().isoformat()}",
            record_id=nc["id"],
            entity_type=EntityType.NON_CONFORMANCE,
            action_type=ActionType.ESCALATION,
            description=message,
            performed_by=SYSTEM_ACTOR,
            metadata={"level": level, "days": days, "status": status_name},
            now=now,
        )
        if written:
            await _notify(
                notifier, _recipient(nc), message, "escalation",
                record_id=nc["id"], entity_type=EntityType.NON_CONFORMANCE.value,
            )
        return written

    filters = {
        "status": storage_variants(EntityType.NON_CONFORMANCE, *thresholds),
        "status_changed_at__lt": now - timedelta(days=min(thresholds.values())),
    }
    return await _sweep(
        "stale_nonconformances", store, "non_conformances", filters, handle,
        batch_size=batch_size, start_after=start_after, should_stop=should_stop,
    )


async def sweep_expired_documents(
    store: RecordStore,
    notifier: Notifier | None = None,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    start_after: uuid.UUID | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> SweepReport:
    """Published documents past their expiry date become Expired."""
    now = now or utcnow()

    async def handle(doc: dict) -> bool:
        try:
            await apply_transition(store, EntityType.DOCUMENT, doc["id"], DocumentStatus.EXPIRED, SYSTEM_ACTOR, automated=True, now=now)
        except ConflictError as exc:
            # checked out or changed since read; picked up by a later run
            logger.info("Document %s not expired: %s", doc["id"], exc.reason)
            return False
        await _notify(
            notifier, _recipient(doc), f"Document '{doc.get('title')}' has expired", "warning",
            record_id=doc["id"], entity_type=EntityType.DOCUMENT.value,
        )
        return True

    filters = {
        "status": storage_variants(EntityType.DOCUMENT, DocumentStatus.PUBLISHED),
        "expiry_date__lte": now,
    }
    return await _sweep(
        "expired_documents", store, "documents", filters, handle,
        batch_size=batch_size, start_after=start_after, should_stop=should_stop,
    )


SWEEPS = {
    "overdue_capas": sweep_overdue_capas,
    "effectiveness_reviews": sweep_effectiveness_reviews,
    "deadline_warnings": sweep_deadline_warnings,
    "stale_nonconformances": sweep_stale_nonconformances,
    "expired_documents": sweep_expired_documents,
}


async def run_sweep(
    name: str,
    store: RecordStore,
    notifier: Notifier | None = None,
    **kwargs,
) -> SweepReport:
    try:
        sweep = SWEEPS[name]
    except KeyError:
        raise ValidationError(f"Unknown sweep {name!r}. Available: {', '.join(SWEEPS)}") from None
    return await sweep(store, notifier, **kwargs)


async def run_all(
    store: RecordStore,
    notifier: Notifier | None = None,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> list[SweepReport]:
    now = now or utcnow()
    reports = []
    for name in SWEEPS:
        if should_stop is not None and should_stop():
            break
        reports.append(await run_sweep(name, store, notifier, now=now, batch_size=batch_size, should_stop=should_stop))
    return reports
