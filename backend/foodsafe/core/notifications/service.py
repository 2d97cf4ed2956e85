import logging
import uuid
from typing import Protocol

from foodsafe.core.workflow.errors import NotFoundError
from foodsafe.core.workflow.store import RecordStore

logger = logging.getLogger(__name__)

NOTIFICATION_KINDS = ("info", "warning", "escalation", "review_due")


class Notifier(Protocol):
    async def notify(
        self,
        user_id: str,
        message: str,
        kind: str,
        *,
        record_id: uuid.UUID | None = None,
        entity_type: str | None = None,
    ) -> None: ...


class InboxNotifier:
    """Delivers notifications to the in-app inbox (notifications table)."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def notify(
        self,
        user_id: str,
        message: str,
        kind: str,
        *,
        record_id: uuid.UUID | None = None,
        entity_type: str | None = None,
    ) -> None:
        if kind not in NOTIFICATION_KINDS:
            kind = "info"
        await self.store.insert(
            "notifications",
            {
                "id": uuid.uuid4(),
                "user_id": user_id,
                "message": message,
                "kind": kind,
                "record_id": record_id,
                "entity_type": entity_type,
                "is_read": False,
            },
        )
        logger.debug("Notified %s (%s): %s", user_id, kind, message)


async def list_notifications(store: RecordStore, user_id: str, unread_only: bool = False) -> list[dict]:
    filters: dict = {"user_id": user_id}
    if unread_only:
        filters["is_read"] = False
    return await store.query("notifications", filters, order_by="created_at", descending=True)


async def mark_read(store: RecordStore, user_id: str, notification_id: uuid.UUID) -> dict:
    updated = await store.update("notifications", notification_id, {"is_read": True}, only_if={"user_id": user_id})
    if updated is None:
        raise NotFoundError("Notification not found")
    return updated
