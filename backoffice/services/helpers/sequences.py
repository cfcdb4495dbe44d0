"""
Per-tenant sequential numbers.

Generates human-readable codes:
  - Workflows:  WF-{seq:06d}   (e.g. WF-000001)
  - Invoices:   INV-{seq:06d}  (e.g. INV-000042)

Numbers are tenant-wide unique and monotonic. The counter lives on the
tenants row and is bumped with ``UPDATE ... SET seq = seq + 1`` inside the
caller's transaction: the UPDATE holds the row lock until commit, so two
concurrent creates in one tenant can never read the same value. A rolled
back create leaves a gap, never a duplicate.
"""

from sqlalchemy import select, update

from backoffice.core.exceptions import NoTenantError
from backoffice.models import db
from backoffice.models.auth import Tenant

_tenants = Tenant.__table__


def _next_value(tenant_id: int, column_name: str) -> int:
    column = _tenants.c[column_name]
    result = db.session.execute(
        update(_tenants)
        .where(_tenants.c.id == tenant_id)
        .values({column_name: column + 1})
    )
    if result.rowcount != 1:
        raise NoTenantError()
    return db.session.execute(
        select(column).where(_tenants.c.id == tenant_id)
    ).scalar_one()


def next_workflow_number(tenant_id: int) -> str:
    """Reserve the next workflow number: WF-000001, WF-000002, ..."""
    return f"WF-{_next_value(tenant_id, 'workflow_seq'):06d}"


def next_invoice_number(tenant_id: int) -> str:
    """Reserve the next invoice number: INV-000001, INV-000002, ..."""
    return f"INV-{_next_value(tenant_id, 'invoice_seq'):06d}"
