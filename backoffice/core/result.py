"""
Discriminated result values returned to the presentation layer.

Services raise typed ``AppError`` subclasses; ``run_action`` is the single
boundary that turns them into an ``ActionResult`` so that callers never see
an unstructured exception and never lose the (code, message) pair.

    result = run_action(workflow_service.approve_workflow, ctx, wf_id)
    if result.success:
        ...
    else:
        result.error["code"]      # "ERR-WF-001"
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from backoffice.core.exceptions import AppError
from backoffice.models import db

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: dict | None = None
    http_status: int = 200
    details: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, data=None, http_status: int = 200) -> "ActionResult":
        return cls(success=True, data=data, http_status=http_status)

    @classmethod
    def fail(cls, exc: AppError) -> "ActionResult":
        return cls(
            success=False,
            error=exc.to_dict(),
            http_status=exc.http_status,
            details=getattr(exc, "details", {}) or {},
        )

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


def run_action(fn, *args, **kwargs) -> ActionResult:
    """Invoke a service operation and wrap its outcome.

    - Return value         → ``ActionResult.ok(value)``
    - ``AppError``         → ``ActionResult.fail(exc)`` (session rolled back)
    - ``SQLAlchemyError``  → ``ERR-SYS-001`` carrying the driver message

    Any other exception propagates: it is a programming error, not a
    business outcome.
    """
    try:
        return ActionResult.ok(fn(*args, **kwargs))
    except AppError as exc:
        db.session.rollback()
        logger.info(
            "Action %s failed: %s",
            getattr(fn, "__name__", fn), exc.code,
            extra={"event_type": "action_failed"},
        )
        return ActionResult.fail(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Persistence failure in %s", getattr(fn, "__name__", fn))
        return ActionResult(
            success=False,
            error={"code": "ERR-SYS-001", "message": str(exc)},
            http_status=500,
        )
