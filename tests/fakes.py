"""In-memory stand-ins for the store and notifier collaborators."""
import copy
import uuid
from datetime import datetime, timezone

from sqlalchemy import inspect

from foodsafe.core.workflow.errors import ConstraintViolation, ValidationError
from foodsafe.core.workflow.store import APPEND_ONLY_TABLES, TABLES, normalize_filter

UNIQUE_KEYS = {
    "capas": [("source", "source_id")],
    "activities": [("dedupe_key",)],
    "document_versions": [("document_id", "version_no")],
}


def _matches(row: dict, filters: dict | None) -> bool:
    for key, expected in (filters or {}).items():
        field, op, value = normalize_filter(key, expected)
        actual = row.get(field)
        if op == "eq" and not actual == value:
            return False
        if op == "ne" and not actual != value:
            return False
        if op in ("lt", "lte", "gt", "gte"):
            if actual is None:
                return False
            if op == "lt" and not actual < value:
                return False
            if op == "lte" and not actual <= value:
                return False
            if op == "gt" and not actual > value:
                return False
            if op == "gte" and not actual >= value:
                return False
        if op == "in" and actual not in list(value):
            return False
        if op == "is_null" and (actual is None) != bool(value):
            return False
    return True


class InMemoryRecordStore:
    """
    Behaves like SqlAlchemyRecordStore: column defaults and NOT NULL come from
    the ORM models, unique indexes raise ConstraintViolation, rows are copies.
    ``fail_next`` queues an exception for the next matching call.
    """

    def __init__(self):
        self.tables: dict[str, dict[uuid.UUID, dict]] = {name: {} for name in TABLES}
        self._failures: list[tuple[str, str, Exception]] = []
        self.calls: list[tuple[str, str]] = []

    def fail_next(self, op: str, table: str, exc: Exception) -> None:
        self._failures.append((op, table, exc))

    def _maybe_fail(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if table not in TABLES:
            raise ValidationError(f"Unknown table {table!r}")
        for i, (f_op, f_table, exc) in enumerate(self._failures):
            if f_op == op and f_table == table:
                del self._failures[i]
                raise exc

    @staticmethod
    def _columns(table: str):
        return inspect(TABLES[table]).column_attrs

    def _fill_defaults(self, table: str, row: dict) -> dict:
        columns = self._columns(table)
        unknown = set(row) - {attr.key for attr in columns}
        if unknown:
            raise TypeError(f"{table} has no attribute(s) {sorted(unknown)}")
        out = {}
        for attr in columns:
            column = attr.columns[0]
            if attr.key in row and row[attr.key] is not None:
                out[attr.key] = row[attr.key]
            elif attr.key in row and column.nullable:
                out[attr.key] = None
            elif column.default is not None:
                default = column.default
                out[attr.key] = default.arg(None) if default.is_callable else default.arg
            else:
                out[attr.key] = None
            if out[attr.key] is None and not column.nullable:
                raise ConstraintViolation(f"{table}.{attr.key} may not be null")
        return out

    def _check_unique(self, table: str, row: dict) -> None:
        for fields in UNIQUE_KEYS.get(table, []):
            values = tuple(row.get(f) for f in fields)
            if any(v is None for v in values):
                continue
            for other in self.tables[table].values():
                if other["id"] != row["id"] and tuple(other.get(f) for f in fields) == values:
                    raise ConstraintViolation(f"duplicate {table} {fields}={values}")

    async def get(self, table: str, record_id: uuid.UUID) -> dict | None:
        self._maybe_fail("get", table)
        row = self.tables[table].get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def insert(self, table: str, row: dict) -> dict:
        self._maybe_fail("insert", table)
        full = self._fill_defaults(table, row)
        if full["id"] in self.tables[table]:
            raise ConstraintViolation(f"duplicate {table} id {full['id']}")
        self._check_unique(table, full)
        self.tables[table][full["id"]] = full
        return copy.deepcopy(full)

    async def update(self, table: str, record_id: uuid.UUID, patch: dict, *, only_if: dict | None = None) -> dict | None:
        self._maybe_fail("update", table)
        if table in APPEND_ONLY_TABLES:
            raise ValidationError(f"{table} is append-only")
        row = self.tables[table].get(record_id)
        if row is None or not _matches(row, only_if):
            return None
        candidate = {**row, **patch}
        if "updated_at" in candidate:
            candidate["updated_at"] = datetime.now(timezone.utc)
        self._fill_defaults(table, candidate)
        self._check_unique(table, candidate)
        self.tables[table][record_id] = candidate
        return copy.deepcopy(candidate)

    async def query(
        self,
        table: str,
        filters: dict | None = None,
        *,
        order_by: str = "id",
        descending: bool = False,
        limit: int | None = None,
        after=None,
    ) -> list[dict]:
        self._maybe_fail("query", table)
        rows = [r for r in self.tables[table].values() if _matches(r, filters)]
        if after is not None:
            rows = [r for r in rows if r.get(order_by) is not None and (r[order_by] < after if descending else r[order_by] > after)]
        rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by), r["id"]), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(r) for r in rows]

    # test helpers

    def all(self, table: str) -> list[dict]:
        return [copy.deepcopy(r) for r in self.tables[table].values()]

    def put(self, table: str, row: dict) -> dict:
        """Seed a row directly, bypassing services (e.g. legacy spellings)."""
        full = self._fill_defaults(table, {"id": uuid.uuid4(), **row})
        self.tables[table][full["id"]] = full
        return copy.deepcopy(full)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def notify(self, user_id, message, kind, *, record_id=None, entity_type=None):
        if self.fail:
            raise ConnectionError("notification service down")
        self.sent.append({"user_id": user_id, "message": message, "kind": kind, "record_id": record_id})

