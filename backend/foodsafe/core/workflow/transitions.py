"""
Transition validator.

Legal next-states per entity type. Pure: no I/O, no side effects. The
transition engine asks here before it writes anything.
"""
import enum
from dataclasses import dataclass
from typing import Any

from foodsafe.core.workflow.errors import ValidationError
from foodsafe.core.workflow.statuses import (
    CapaStatus,
    CheckoutStatus,
    ComplaintStatus,
    DocumentStatus,
    EntityType,
    NCStatus,
    from_storage,
    parse_status,
    statuses_of,
    to_storage,
)

VALID_TRANSITIONS: dict[EntityType, dict[enum.Enum, list[enum.Enum]]] = {
    EntityType.NON_CONFORMANCE: {
        NCStatus.ON_HOLD: [NCStatus.UNDER_REVIEW, NCStatus.RELEASED],
        NCStatus.UNDER_REVIEW: [NCStatus.RESOLVED, NCStatus.REJECTED, NCStatus.DISPOSED],
        NCStatus.RELEASED: [NCStatus.CLOSED],
        NCStatus.DISPOSED: [NCStatus.CLOSED],
        NCStatus.RESOLVED: [NCStatus.CLOSED],
        NCStatus.REJECTED: [NCStatus.CLOSED],
        NCStatus.CLOSED: [],
    },
    EntityType.CAPA: {
        CapaStatus.OPEN: [CapaStatus.IN_PROGRESS, CapaStatus.OVERDUE],
        CapaStatus.IN_PROGRESS: [CapaStatus.CLOSED, CapaStatus.OVERDUE],
        # narrowed to the status it was raised from, see _from_overdue
        CapaStatus.OVERDUE: [CapaStatus.OPEN, CapaStatus.IN_PROGRESS, CapaStatus.CLOSED],
        CapaStatus.CLOSED: [CapaStatus.VERIFIED],
        CapaStatus.VERIFIED: [],
    },
    EntityType.COMPLAINT: {
        ComplaintStatus.NEW: [ComplaintStatus.UNDER_INVESTIGATION, ComplaintStatus.ESCALATED],
        ComplaintStatus.UNDER_INVESTIGATION: [
            ComplaintStatus.PENDING_RESPONSE,
            ComplaintStatus.RESOLVED,
            ComplaintStatus.ESCALATED,
        ],
        ComplaintStatus.PENDING_RESPONSE: [ComplaintStatus.RESOLVED, ComplaintStatus.ESCALATED],
        ComplaintStatus.ESCALATED: [ComplaintStatus.UNDER_INVESTIGATION, ComplaintStatus.RESOLVED],
        ComplaintStatus.RESOLVED: [ComplaintStatus.CLOSED],
        ComplaintStatus.CLOSED: [],
    },
    EntityType.DOCUMENT: {
        DocumentStatus.DRAFT: [DocumentStatus.PENDING_APPROVAL, DocumentStatus.PENDING_REVIEW],
        DocumentStatus.PENDING_REVIEW: [DocumentStatus.PENDING_APPROVAL, DocumentStatus.REJECTED],
        DocumentStatus.PENDING_APPROVAL: [DocumentStatus.APPROVED, DocumentStatus.REJECTED],
        DocumentStatus.APPROVED: [DocumentStatus.PUBLISHED],
        DocumentStatus.REJECTED: [DocumentStatus.DRAFT],
        DocumentStatus.PUBLISHED: [DocumentStatus.ARCHIVED, DocumentStatus.EXPIRED],
        DocumentStatus.EXPIRED: [DocumentStatus.ARCHIVED],
        DocumentStatus.ARCHIVED: [],
    },
    EntityType.DOCUMENT_CHECKOUT: {
        CheckoutStatus.AVAILABLE: [CheckoutStatus.CHECKED_OUT],
        CheckoutStatus.CHECKED_OUT: [CheckoutStatus.AVAILABLE],
    },
}

# Targets only the automation scheduler may move a record into.
AUTOMATION_ONLY: dict[EntityType, set[enum.Enum]] = {
    EntityType.CAPA: {CapaStatus.OVERDUE},
    EntityType.DOCUMENT: {DocumentStatus.EXPIRED},
}

ACTIVE_COMPLAINT_STATUSES = {
    ComplaintStatus.NEW,
    ComplaintStatus.UNDER_INVESTIGATION,
    ComplaintStatus.PENDING_RESPONSE,
}

_SPECIFIC_REASONS: dict[tuple[EntityType, enum.Enum, enum.Enum], str] = {
    (EntityType.NON_CONFORMANCE, NCStatus.ON_HOLD, NCStatus.CLOSED):
        "Cannot close a Non-Conformance directly from On Hold; move it to Under Review or Released first",
    (EntityType.CAPA, CapaStatus.OPEN, CapaStatus.CLOSED):
        "Cannot close a CAPA that has not been started; move it to In Progress first",
    (EntityType.COMPLAINT, ComplaintStatus.NEW, ComplaintStatus.RESOLVED):
        "A complaint must be investigated before it can be resolved",
    (EntityType.DOCUMENT, DocumentStatus.DRAFT, DocumentStatus.APPROVED):
        "A draft must be submitted for approval before it can be approved",
    (EntityType.DOCUMENT, DocumentStatus.DRAFT, DocumentStatus.PUBLISHED):
        "A document must be approved before it can be published",
}


@dataclass(frozen=True)
class TransitionCheck:
    legal: bool
    reason: str | None = None


def _illegal(reason: str) -> TransitionCheck:
    return TransitionCheck(legal=False, reason=reason)


def _from_overdue(resume: CapaStatus, target: CapaStatus, automated: bool) -> TransitionCheck:
    """
    Overdue is a flag over Open / In Progress, not a step of its own. The
    CAPA moves on with the successors of the status it was raised from; going
    back to that status is automation's job once the due date is extended.
    """
    resume_name = to_storage(EntityType.CAPA, resume)
    if target is resume:
        if automated:
            return TransitionCheck(legal=True)
        return _illegal(f"An overdue CAPA returns to '{resume_name}' only when its due date is extended")
    if target in VALID_TRANSITIONS[EntityType.CAPA][resume]:
        return TransitionCheck(legal=True)
    specific = _SPECIFIC_REASONS.get((EntityType.CAPA, resume, target))
    if specific:
        return _illegal(specific)
    return _illegal(f"Cannot move an overdue '{resume_name}' CAPA to '{to_storage(EntityType.CAPA, target)}'")


def overdue_resume_status(resume_status: Any) -> CapaStatus:
    """The status an Overdue CAPA continues from."""
    resume = from_storage(EntityType.CAPA, resume_status)
    # rows flagged before the underlying status was kept count as not started
    return resume if resume in (CapaStatus.OPEN, CapaStatus.IN_PROGRESS) else CapaStatus.OPEN


def validate_transition(
    entity_type: EntityType | str,
    from_status: Any,
    to_status: Any,
    *,
    automated: bool = False,
    resume_status: Any = None,
) -> TransitionCheck:
    """
    ``resume_status`` only matters for an Overdue CAPA: the Open / In Progress
    status the overdue sweep raised it from.
    """
    entity_type = EntityType(entity_type)
    current = from_storage(entity_type, from_status)
    try:
        target = parse_status(entity_type, to_status)
    except ValidationError as exc:
        return _illegal(exc.reason)

    label = entity_type.label
    current_name = to_storage(entity_type, current)
    target_name = to_storage(entity_type, target)

    if current is target:
        return _illegal(f"{label} is already '{current_name}'")

    if target in AUTOMATION_ONLY.get(entity_type, set()) and not automated:
        return _illegal(f"'{target_name}' is set by automation only")

    if current is CapaStatus.OVERDUE:
        return _from_overdue(overdue_resume_status(resume_status), target, automated)

    allowed = VALID_TRANSITIONS[entity_type].get(current, [])
    if target in allowed:
        return TransitionCheck(legal=True)

    specific = _SPECIFIC_REASONS.get((entity_type, current, target))
    if specific:
        return _illegal(specific)
    if not allowed:
        return _illegal(f"'{current_name}' is a terminal status for a {label}")
    if entity_type is EntityType.COMPLAINT and target is ComplaintStatus.ESCALATED:
        return _illegal("Only active complaints can be escalated")
    if entity_type is EntityType.CAPA and target is CapaStatus.VERIFIED:
        return _illegal("Only a Closed CAPA can move to verification")
    return _illegal(f"Cannot move a {label} from '{current_name}' to '{target_name}'")


def allowed_transitions(
    entity_type: EntityType | str,
    from_status: Any,
    *,
    automated: bool = False,
    resume_status: Any = None,
) -> list[enum.Enum]:
    entity_type = EntityType(entity_type)
    current = from_storage(entity_type, from_status)
    if current is CapaStatus.OVERDUE:
        return [
            s for s in statuses_of(EntityType.CAPA)
            if s is not current
            and validate_transition(entity_type, current, s, automated=automated, resume_status=resume_status).legal
        ]
    blocked = set() if automated else AUTOMATION_ONLY.get(entity_type, set())
    return [s for s in VALID_TRANSITIONS[entity_type].get(current, []) if s not in blocked]
