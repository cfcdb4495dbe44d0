"""
Tenant-scoped query helpers.

Every get-by-id in the service layer goes through ``get_scoped`` instead
of ``db.session.get(Model, pk)``. A bare ``.get()`` bypasses tenant
isolation; this helper makes a foreign-tenant row indistinguishable from a
missing one (both raise NotFoundError with the caller's error code).

Rows are always re-read from the database (``populate_existing``) so that
status checks run against fresh state immediately before a write.

Usage:
    wf = get_scoped(Workflow, workflow_id, tenant_id=tid, code="ERR-WF-003")
    project = get_scoped_or_none(Project, project_id, tenant_id=tid)
"""

import logging

from sqlalchemy import select

from backoffice.core.exceptions import NotFoundError
from backoffice.models import db

logger = logging.getLogger(__name__)


def _scoped_select(model, pk, tenant_id):
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant_id scope. "
            "Unscoped lookups are forbidden — they bypass tenant isolation."
        )
    if not hasattr(model, "tenant_id"):
        raise ValueError(f"{model.__name__} has no tenant_id column to scope by")
    return (
        select(model)
        .where(model.id == pk, model.tenant_id == tenant_id)
        .execution_options(populate_existing=True)
    )


def get_scoped_or_none(model, pk, *, tenant_id: int):
    """Fetch *model* by PK within *tenant_id*, or None."""
    if pk is None:
        return None
    try:
        pk = int(pk)
    except (TypeError, ValueError):
        return None
    return db.session.execute(_scoped_select(model, pk, tenant_id)).scalar_one_or_none()


def get_scoped(model, pk, *, tenant_id: int, code: str, resource: str | None = None):
    """Fetch *model* by PK within *tenant_id* or raise NotFoundError(code).

    The two failure cases (missing row, row of another tenant) are
    intentionally indistinguishable.
    """
    obj = get_scoped_or_none(model, pk, tenant_id=tenant_id)
    if obj is None:
        logger.debug("Scoped lookup miss: %s id=%s tenant=%s", model.__name__, pk, tenant_id)
        raise NotFoundError(code, resource or model.__name__, pk, tenant_id=tenant_id)
    return obj
