"""
Status registry.

Single source of truth for converting between the enums the application
works with and the strings stored in the database. Stored values have been
written over the years with spaces, underscores and a few legacy spellings
("Pending Approval" / "Pending_Approval", "Verified" / "Pending Verification"),
so every read goes through ``from_storage`` and every comparison through
``status_equals``. Writes always use the one canonical form.
"""
import enum
import logging
from typing import Any, Iterable

from foodsafe.core.workflow.errors import ValidationError

logger = logging.getLogger(__name__)


class EntityType(str, enum.Enum):
    CAPA = "capa"
    NON_CONFORMANCE = "non_conformance"
    COMPLAINT = "complaint"
    DOCUMENT = "document"
    # Checkout is an orthogonal sub-state machine of documents.
    DOCUMENT_CHECKOUT = "document_checkout"

    @classmethod
    def _missing_(cls, value):
        # Accept "NonConformance", "CAPA", "Document" etc.
        if isinstance(value, str):
            squashed = value.replace("-", "").replace("_", "").replace(" ", "").lower()
            for member in cls:
                if member.value.replace("_", "") == squashed:
                    return member
        return None

    @property
    def label(self) -> str:
        return _ENTITY_LABELS[self]


_ENTITY_LABELS = {
    EntityType.CAPA: "CAPA",
    EntityType.NON_CONFORMANCE: "Non-Conformance",
    EntityType.COMPLAINT: "Complaint",
    EntityType.DOCUMENT: "Document",
    EntityType.DOCUMENT_CHECKOUT: "Document checkout",
}


class CapaStatus(enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    VERIFIED = "verified"
    OVERDUE = "overdue"


class NCStatus(enum.Enum):
    ON_HOLD = "on_hold"
    UNDER_REVIEW = "under_review"
    RELEASED = "released"
    DISPOSED = "disposed"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    CLOSED = "closed"


class ComplaintStatus(enum.Enum):
    NEW = "new"
    UNDER_INVESTIGATION = "under_investigation"
    PENDING_RESPONSE = "pending_response"
    RESOLVED = "resolved"
    CLOSED = "closed"
    ESCALATED = "escalated"


class DocumentStatus(enum.Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    PUBLISHED = "published"
    REJECTED = "rejected"
    ARCHIVED = "archived"
    EXPIRED = "expired"


class CheckoutStatus(enum.Enum):
    AVAILABLE = "available"
    CHECKED_OUT = "checked_out"


class CapaPriority(enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CapaSource(enum.Enum):
    NON_CONFORMANCE = "non_conformance"
    COMPLAINT = "complaint"
    AUDIT = "audit"
    INTERNAL = "internal"
    OTHER = "other"
    SUPPLIER = "supplier"
    HACCP = "haccp"
    TRACEABILITY = "traceability"


class EffectivenessRating(enum.Enum):
    HIGHLY_EFFECTIVE = "highly_effective"
    EFFECTIVE = "effective"
    PARTIALLY_EFFECTIVE = "partially_effective"
    NOT_EFFECTIVE = "not_effective"


class ComplaintCategory(enum.Enum):
    PRODUCT_QUALITY = "product_quality"
    FOOD_SAFETY = "food_safety"
    FOREIGN_MATERIAL = "foreign_material"
    PACKAGING = "packaging"
    DELIVERY = "delivery"
    SERVICE = "service"
    LABELING = "labeling"
    OTHER = "other"


def _spellings(canonical: str) -> set[str]:
    return {canonical, canonical.replace("_", " "), canonical.replace(" ", "_")}


class Vocabulary:
    """
    Bidirectional mapping for one closed set of values.

    canonical: enum member -> the string written to storage
    legacy:    extra stored spellings accepted on read
    default:   what unknown or missing input reads as (None allowed)
    """

    def __init__(
        self,
        name: str,
        enum_cls: type[enum.Enum],
        canonical: dict[Any, str],
        default: enum.Enum | None,
        legacy: dict[str, Any] | None = None,
    ):
        missing = set(enum_cls) - set(canonical)
        if missing:
            raise RuntimeError(f"{name}: no storage form for {sorted(m.name for m in missing)}")
        self.name = name
        self.enum_cls = enum_cls
        self.default = default
        self._canonical = dict(canonical)
        self._lookup: dict[str, enum.Enum] = {}
        for member, stored in canonical.items():
            for spelling in _spellings(stored):
                self._register(spelling, member)
        for spelling, member in (legacy or {}).items():
            for variant in _spellings(spelling):
                self._register(variant, member)

    def _register(self, spelling: str, member: enum.Enum) -> None:
        existing = self._lookup.get(spelling)
        if existing is not None and existing is not member:
            raise RuntimeError(f"{self.name}: {spelling!r} maps to both {existing.name} and {member.name}")
        self._lookup[spelling] = member

    def to_storage(self, value: enum.Enum) -> str:
        if not isinstance(value, self.enum_cls):
            raise ValidationError(f"{value!r} is not a valid {self.name} value")
        return self._canonical[value]

    def from_storage(self, raw: Any) -> enum.Enum | None:
        if raw is None or raw == "":
            return self.default
        if isinstance(raw, self.enum_cls):
            return raw
        member = self._lookup.get(raw) if isinstance(raw, str) else None
        if member is None:
            logger.warning("Unrecognised %s value %r, reading as %s", self.name, raw, self.default)
            return self.default
        return member

    def parse(self, raw: Any) -> enum.Enum:
        """Strict variant of from_storage for user input: unknown values are rejected."""
        if isinstance(raw, self.enum_cls):
            return raw
        if isinstance(raw, str):
            member = self._lookup.get(raw)
            if member is None:
                try:
                    member = self.enum_cls(raw)
                except ValueError:
                    member = None
            if member is not None:
                return member
        allowed = ", ".join(self._canonical[m] for m in self.enum_cls)
        raise ValidationError(f"Unknown {self.name} {raw!r}. Allowed: {allowed}")

    def variants(self, value: enum.Enum) -> list[str]:
        self.to_storage(value)
        return sorted(s for s, m in self._lookup.items() if m is value)


_STATUS_VOCABULARIES: dict[EntityType, Vocabulary] = {
    EntityType.CAPA: Vocabulary(
        "CAPA status",
        CapaStatus,
        {
            CapaStatus.OPEN: "Open",
            CapaStatus.IN_PROGRESS: "In Progress",
            CapaStatus.CLOSED: "Closed",
            # Stored name kept for compatibility with existing rows.
            CapaStatus.VERIFIED: "Pending Verification",
            CapaStatus.OVERDUE: "Overdue",
        },
        default=CapaStatus.OPEN,
        legacy={"Verified": CapaStatus.VERIFIED},
    ),
    EntityType.NON_CONFORMANCE: Vocabulary(
        "Non-Conformance status",
        NCStatus,
        {
            NCStatus.ON_HOLD: "On Hold",
            NCStatus.UNDER_REVIEW: "Under Review",
            NCStatus.RELEASED: "Released",
            NCStatus.DISPOSED: "Disposed",
            NCStatus.RESOLVED: "Resolved",
            NCStatus.REJECTED: "Rejected",
            NCStatus.CLOSED: "Closed",
        },
        default=NCStatus.ON_HOLD,
        legacy={"Approved": NCStatus.RELEASED},
    ),
    EntityType.COMPLAINT: Vocabulary(
        "Complaint status",
        ComplaintStatus,
        {
            ComplaintStatus.NEW: "New",
            ComplaintStatus.UNDER_INVESTIGATION: "Under_Investigation",
            ComplaintStatus.PENDING_RESPONSE: "Pending_Response",
            ComplaintStatus.RESOLVED: "Resolved",
            ComplaintStatus.CLOSED: "Closed",
            ComplaintStatus.ESCALATED: "Escalated",
        },
        default=ComplaintStatus.NEW,
    ),
    EntityType.DOCUMENT: Vocabulary(
        "Document status",
        DocumentStatus,
        {
            DocumentStatus.DRAFT: "Draft",
            DocumentStatus.PENDING_APPROVAL: "Pending_Approval",
            DocumentStatus.PENDING_REVIEW: "Pending_Review",
            DocumentStatus.APPROVED: "Approved",
            DocumentStatus.PUBLISHED: "Published",
            DocumentStatus.REJECTED: "Rejected",
            DocumentStatus.ARCHIVED: "Archived",
            DocumentStatus.EXPIRED: "Expired",
        },
        default=DocumentStatus.DRAFT,
        legacy={"Under_Review": DocumentStatus.PENDING_REVIEW},
    ),
    EntityType.DOCUMENT_CHECKOUT: Vocabulary(
        "Checkout status",
        CheckoutStatus,
        {
            CheckoutStatus.AVAILABLE: "Available",
            CheckoutStatus.CHECKED_OUT: "Checked_Out",
        },
        default=CheckoutStatus.AVAILABLE,
    ),
}

PRIORITIES = Vocabulary(
    "CAPA priority",
    CapaPriority,
    {
        CapaPriority.CRITICAL: "Critical",
        CapaPriority.HIGH: "High",
        CapaPriority.MEDIUM: "Medium",
        CapaPriority.LOW: "Low",
    },
    default=CapaPriority.MEDIUM,
    legacy={
        "critical": CapaPriority.CRITICAL,
        "high": CapaPriority.HIGH,
        "medium": CapaPriority.MEDIUM,
        "low": CapaPriority.LOW,
        "Urgent": CapaPriority.CRITICAL,
    },
)

SOURCES = Vocabulary(
    "CAPA source",
    CapaSource,
    {member: member.value for member in CapaSource},
    default=CapaSource.OTHER,
    legacy={
        "nonconformance": CapaSource.NON_CONFORMANCE,
        "non-conformance": CapaSource.NON_CONFORMANCE,
        "Non_Conformance": CapaSource.NON_CONFORMANCE,
        "Complaint": CapaSource.COMPLAINT,
        "Audit": CapaSource.AUDIT,
        "Internal_Finding": CapaSource.INTERNAL,
        "internal_finding": CapaSource.INTERNAL,
        "Other": CapaSource.OTHER,
    },
)

EFFECTIVENESS_RATINGS = Vocabulary(
    "effectiveness rating",
    EffectivenessRating,
    {
        EffectivenessRating.HIGHLY_EFFECTIVE: "Highly Effective",
        EffectivenessRating.EFFECTIVE: "Effective",
        EffectivenessRating.PARTIALLY_EFFECTIVE: "Partially Effective",
        EffectivenessRating.NOT_EFFECTIVE: "Not Effective",
    },
    default=None,
)

COMPLAINT_CATEGORIES = Vocabulary(
    "complaint category",
    ComplaintCategory,
    {
        ComplaintCategory.PRODUCT_QUALITY: "Product_Quality",
        ComplaintCategory.FOOD_SAFETY: "Food_Safety",
        ComplaintCategory.FOREIGN_MATERIAL: "Foreign_Material",
        ComplaintCategory.PACKAGING: "Packaging",
        ComplaintCategory.DELIVERY: "Delivery",
        ComplaintCategory.SERVICE: "Service",
        ComplaintCategory.LABELING: "Labeling",
        ComplaintCategory.OTHER: "Other",
    },
    default=ComplaintCategory.OTHER,
    legacy={"Customer_Service": ComplaintCategory.SERVICE},
)


def vocabulary(entity_type: EntityType | str) -> Vocabulary:
    return _STATUS_VOCABULARIES[EntityType(entity_type)]


def to_storage(entity_type: EntityType | str, value: enum.Enum) -> str:
    return vocabulary(entity_type).to_storage(value)


def from_storage(entity_type: EntityType | str, raw: Any) -> enum.Enum:
    return vocabulary(entity_type).from_storage(raw)


def parse_status(entity_type: EntityType | str, raw: Any) -> enum.Enum:
    return vocabulary(entity_type).parse(raw)


def status_equals(entity_type: EntityType | str, raw: Any, value: enum.Enum) -> bool:
    return from_storage(entity_type, raw) is value


def storage_variants(entity_type: EntityType | str, *values: enum.Enum) -> list[str]:
    """Every stored spelling of the given statuses, for building store filters."""
    vocab = vocabulary(entity_type)
    result: list[str] = []
    for value in values:
        result.extend(vocab.variants(value))
    return result


def statuses_of(entity_type: EntityType | str) -> Iterable[enum.Enum]:
    return iter(vocabulary(entity_type).enum_cls)


def canonicalize(entity_type: EntityType | str, row: dict) -> dict:
    """Copy of a stored row with its status fields rewritten to canonical form."""
    entity_type = EntityType(entity_type)
    out = dict(row)
    out["status"] = to_storage(entity_type, from_storage(entity_type, row.get("status")))
    if entity_type is EntityType.DOCUMENT:
        checkout = from_storage(EntityType.DOCUMENT_CHECKOUT, row.get("checkout_status"))
        out["checkout_status"] = to_storage(EntityType.DOCUMENT_CHECKOUT, checkout)
    elif entity_type is EntityType.CAPA:
        out["priority"] = PRIORITIES.to_storage(PRIORITIES.from_storage(row.get("priority")))
        out["source"] = SOURCES.to_storage(SOURCES.from_storage(row.get("source")))
        rating = EFFECTIVENESS_RATINGS.from_storage(row.get("effectiveness_rating"))
        out["effectiveness_rating"] = EFFECTIVENESS_RATINGS.to_storage(rating) if rating else None
    elif entity_type is EntityType.COMPLAINT:
        out["category"] = COMPLAINT_CATEGORIES.to_storage(COMPLAINT_CATEGORIES.from_storage(row.get("category")))
        out["priority"] = PRIORITIES.to_storage(PRIORITIES.from_storage(row.get("priority")))
    return out
