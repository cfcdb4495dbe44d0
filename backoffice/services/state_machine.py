"""
State Machine Registry — allowed status transitions per entity type.

This table is the single transition contract for workflows, projects,
tasks and invoices. A new transition is added here, never special-cased
inside a service.

Usage:
    from backoffice.services.state_machine import can_transition, apply_transition

    can_transition("invoice", "draft", "sent")        # True
    apply_transition(workflow, "workflow", "approved", approved_at=now)

``apply_transition`` performs read-check-write: the UPDATE is conditional on
the status the caller observed, so when two callers race on the same row
only one UPDATE matches and the other receives StateTransitionError.
"""

import logging

from sqlalchemy import select, update

from backoffice.core.exceptions import StateTransitionError
from backoffice.models import db

logger = logging.getLogger(__name__)

# ── Transition tables ───────────────────────────────────────────────────────

WORKFLOW_TRANSITIONS = {
    "draft": frozenset({"submitted"}),
    "submitted": frozenset({"approved", "rejected", "withdrawn"}),
    "rejected": frozenset({"submitted", "withdrawn"}),
    "approved": frozenset(),
    "withdrawn": frozenset(),
}

# Project transitions are deployment configuration; confirm before relying
# on them for compliance reporting.
PROJECT_TRANSITIONS = {
    "planning": frozenset({"active", "cancelled"}),
    "active": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

TASK_TRANSITIONS = {
    "todo": frozenset({"in_progress"}),
    "in_progress": frozenset({"done", "todo"}),
    "done": frozenset({"in_progress"}),
}

INVOICE_TRANSITIONS = {
    "draft": frozenset({"sent", "cancelled"}),
    "sent": frozenset({"paid", "cancelled"}),
    "paid": frozenset(),
    "cancelled": frozenset(),
}

TRANSITIONS = {
    "workflow": WORKFLOW_TRANSITIONS,
    "project": PROJECT_TRANSITIONS,
    "task": TASK_TRANSITIONS,
    "invoice": INVOICE_TRANSITIONS,
}

# Error code raised for a disallowed transition, per entity type
TRANSITION_ERROR_CODES = {
    "workflow": "ERR-WF-001",
    "project": "ERR-PJ-002",
    "task": "ERR-TASK-002",
    "invoice": "ERR-INV-003",
}


def _table(entity_type: str) -> dict:
    try:
        return TRANSITIONS[entity_type]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type!r}") from None


def allowed_transitions(entity_type: str, from_status: str) -> frozenset:
    """Statuses reachable from *from_status* (empty for terminal/unknown states)."""
    return _table(entity_type).get(from_status, frozenset())


def can_transition(entity_type: str, from_status: str, to_status: str) -> bool:
    """Pure lookup against the static table."""
    return to_status in allowed_transitions(entity_type, from_status)


def require_transition(entity_type: str, from_status: str, to_status: str) -> None:
    """Raise StateTransitionError unless the transition is allowed."""
    if not can_transition(entity_type, from_status, to_status):
        raise StateTransitionError(
            TRANSITION_ERROR_CODES[entity_type], entity_type, from_status, to_status,
        )


def apply_transition(instance, entity_type: str, to_status: str, **values):
    """
    Validate and persist a status change with a compare-and-set UPDATE.

    Args:
        instance: ORM row holding the status the caller observed.
        entity_type: Key into TRANSITIONS.
        to_status: Requested status.
        **values: Extra columns written in the same UPDATE.

    Returns:
        The refreshed instance.

    Raises:
        StateTransitionError: disallowed transition, or the stored status
            changed between read and write.
    """
    observed = instance.status
    require_transition(entity_type, observed, to_status)

    model = type(instance)
    result = db.session.execute(
        update(model)
        .where(
            model.id == instance.id,
            model.tenant_id == instance.tenant_id,
            model.status == observed,
        )
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.session.execute(
            select(model.status).where(model.id == instance.id)
        ).scalar()
        logger.warning(
            "Concurrent %s transition lost: id=%s observed=%s stored=%s requested=%s",
            entity_type, instance.id, observed, current, to_status,
            extra={"tenant_id": instance.tenant_id, "event_type": "transition_conflict"},
        )
        raise StateTransitionError(
            TRANSITION_ERROR_CODES[entity_type], entity_type, current, to_status,
        )

    db.session.refresh(instance)
    return instance
