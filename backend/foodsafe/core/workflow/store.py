"""
Record store: the persistence seam of the workflow engine.

The engine reads and writes plain ``dict`` rows keyed by table name so it
never depends on an ORM session directly. ``SqlAlchemyRecordStore`` is the
production implementation; tests use an in-memory fake with the same
behaviour.

Filters are ``{"field": value}`` or ``{"field__op": value}`` where op is one
of eq, ne, lt, lte, gt, gte, in, is_null. A list value without an op means
``in``; ``None`` without an op means ``is null``.
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Protocol

from sqlalchemy import inspect, select, update
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from foodsafe.core.activity.models import Activity
from foodsafe.core.capa.models import Capa
from foodsafe.core.complaints.models import Complaint
from foodsafe.core.documents.models import Document, DocumentVersion
from foodsafe.core.nonconformance.models import NonConformance
from foodsafe.core.notifications.models import Notification
from foodsafe.core.workflow.errors import ConstraintViolation, StoreError, TransportError, ValidationError

logger = logging.getLogger(__name__)

TABLES = {
    "capas": Capa,
    "non_conformances": NonConformance,
    "complaints": Complaint,
    "documents": Document,
    "document_versions": DocumentVersion,
    "activities": Activity,
    "notifications": Notification,
}

APPEND_ONLY_TABLES = {"activities", "document_versions"}

FILTER_OPS = ("eq", "ne", "lt", "lte", "gt", "gte", "in", "is_null")


class RecordStore(Protocol):
    async def get(self, table: str, record_id: uuid.UUID) -> dict | None: ...

    async def insert(self, table: str, row: dict) -> dict: ...

    async def update(
        self,
        table: str,
        record_id: uuid.UUID,
        patch: dict,
        *,
        only_if: dict | None = None,
    ) -> dict | None: ...

    async def query(
        self,
        table: str,
        filters: dict | None = None,
        *,
        order_by: str = "id",
        descending: bool = False,
        limit: int | None = None,
        after: Any = None,
    ) -> list[dict]: ...


def split_filter_key(key: str) -> tuple[str, str | None]:
    field, sep, op = key.rpartition("__")
    if sep and op in FILTER_OPS:
        return field, op
    return key, None


def normalize_filter(key: str, value: Any) -> tuple[str, str, Any]:
    """Resolve the implicit operators: list -> in, None -> is_null."""
    field, op = split_filter_key(key)
    if op is None:
        if isinstance(value, (list, tuple, set, frozenset)):
            op = "in"
        elif value is None:
            op, value = "is_null", True
        else:
            op = "eq"
    return field, op, value


@contextmanager
def _store_errors(action: str, table: str):
    try:
        yield
    except IntegrityError as exc:
        raise ConstraintViolation(f"{action} on {table} rejected by an integrity constraint") from exc
    except (OperationalError, InterfaceError, PoolTimeoutError, TimeoutError, ConnectionError) as exc:
        raise TransportError(f"Database unavailable during {action} on {table}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransportError(f"Database connection lost during {action} on {table}") from exc
        raise StoreError(f"{action} on {table} failed") from exc
    except SQLAlchemyError as exc:
        raise StoreError(f"{action} on {table} failed") from exc


class SqlAlchemyRecordStore:
    """RecordStore over an async SQLAlchemy session. Does not commit."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _model(table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise ValidationError(f"Unknown table {table!r}") from None

    @staticmethod
    def _as_dict(obj) -> dict:
        mapper = inspect(obj).mapper
        return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}

    @staticmethod
    def _column(model, field: str):
        attr = getattr(model, field, None)
        if attr is None or field not in inspect(model).column_attrs:
            raise ValidationError(f"{model.__tablename__} has no field {field!r}")
        return attr

    def _conditions(self, model, filters: dict | None) -> list:
        conditions = []
        for key, value in (filters or {}).items():
            field, op, value = normalize_filter(key, value)
            column = self._column(model, field)
            if op == "eq":
                conditions.append(column == value)
            elif op == "ne":
                conditions.append(column != value)
            elif op == "lt":
                conditions.append(column < value)
            elif op == "lte":
                conditions.append(column <= value)
            elif op == "gt":
                conditions.append(column > value)
            elif op == "gte":
                conditions.append(column >= value)
            elif op == "in":
                conditions.append(column.in_(list(value)))
            elif op == "is_null":
                conditions.append(column.is_(None) if value else column.is_not(None))
        return conditions

    async def get(self, table: str, record_id: uuid.UUID) -> dict | None:
        model = self._model(table)
        with _store_errors("get", table):
            obj = await self.session.get(model, record_id, populate_existing=True)
        return self._as_dict(obj) if obj is not None else None

    async def insert(self, table: str, row: dict) -> dict:
        model = self._model(table)
        obj = model(**row)
        with _store_errors("insert", table):
            async with self.session.begin_nested():
                self.session.add(obj)
                await self.session.flush()
        return self._as_dict(obj)

    async def update(
        self,
        table: str,
        record_id: uuid.UUID,
        patch: dict,
        *,
        only_if: dict | None = None,
    ) -> dict | None:
        """
        Conditional update. Returns the updated row, or None when the row is
        missing or no longer matches ``only_if`` (compare-and-set lost).
        """
        if table in APPEND_ONLY_TABLES:
            raise ValidationError(f"{table} is append-only")
        model = self._model(table)
        stmt = (
            update(model)
            .where(model.id == record_id, *self._conditions(model, only_if))
            .values(**patch)
            .returning(model)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        with _store_errors("update", table):
            async with self.session.begin_nested():
                result = await self.session.execute(stmt)
                obj = result.scalar_one_or_none()
        return self._as_dict(obj) if obj is not None else None

    async def query(
        self,
        table: str,
        filters: dict | None = None,
        *,
        order_by: str = "id",
        descending: bool = False,
        limit: int | None = None,
        after: Any = None,
    ) -> list[dict]:
        """
        ``after`` is a keyset cursor on ``order_by``: only rows strictly past
        it (in the requested direction) are returned.
        """
        model = self._model(table)
        column = self._column(model, order_by)
        stmt = select(model).where(*self._conditions(model, filters))
        if after is not None:
            stmt = stmt.where(column < after if descending else column > after)
        if descending:
            stmt = stmt.order_by(column.desc(), model.id.desc())
        else:
            stmt = stmt.order_by(column.asc(), model.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with _store_errors("query", table):
            result = await self.session.execute(stmt)
            rows = result.scalars().all()
        return [self._as_dict(obj) for obj in rows]
