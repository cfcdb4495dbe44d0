"""
Role-Based Access Control (RBAC) evaluator.

Authorization is always role-based: a caller passes if the roles they hold
in the *target* tenant intersect the allowed set. Ownership/relationship
rules (creator, approver, PM, assignee) are layered on top by each entity
service.

Usage:
    from backoffice.services.permission import has_role, require_role

    # Boolean check
    if has_role(ctx, tenant_id, {Role.ACCOUNTING, Role.TENANT_ADMIN}):
        ...

    # Raises AuthorizationError if not allowed
    require_role(ctx, tenant_id, {Role.PM, Role.TENANT_ADMIN}, code="ERR-AUTH-003")
"""

from collections.abc import Iterable

from sqlalchemy import select

from backoffice.core.auth_context import AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, NoTenantError
from backoffice.models import db
from backoffice.models.auth import UserRole
from backoffice.models.project import ProjectMember


def _as_roles(allowed: Iterable) -> frozenset[Role]:
    return frozenset(Role.parse(r) for r in allowed)


def require_tenant(ctx: AuthContext) -> int:
    """Return the caller's tenant id or raise NoTenantError (ERR-AUTH-003)."""
    if ctx is None or ctx.tenant_id is None:
        raise NoTenantError()
    return ctx.tenant_id


def has_role(ctx: AuthContext, tenant_id: int | None, allowed: Iterable) -> bool:
    """
    True iff the caller holds at least one of *allowed* within *tenant_id*.

    Roles in an AuthContext are only valid for the context's own tenant, so
    any other tenant id yields False.
    """
    if ctx is None or tenant_id is None or ctx.tenant_id != tenant_id:
        return False
    return bool(ctx.roles & _as_roles(allowed))


def require_role(
    ctx: AuthContext,
    tenant_id: int | None,
    allowed: Iterable,
    *,
    code: str = "ERR-AUTH-002",
    message: str = "You do not have permission for this action",
) -> None:
    """Same as has_role, raising AuthorizationError(code) on failure."""
    if not has_role(ctx, tenant_id, allowed):
        raise AuthorizationError(code, message)


# ── Stored role lookups ─────────────────────────────────────────────────────


def get_user_roles(user_id: int, tenant_id: int) -> frozenset[Role]:
    """Roles *user_id* holds in *tenant_id*, read from user_roles."""
    rows = db.session.execute(
        select(UserRole.role).where(
            UserRole.user_id == user_id,
            UserRole.tenant_id == tenant_id,
        )
    ).scalars().all()
    roles = set()
    for name in rows:
        try:
            roles.add(Role(name))
        except ValueError:
            continue
    return frozenset(roles)


def load_auth_context(user_id: int, tenant_id: int | None) -> AuthContext:
    """Build an AuthContext with roles re-read from the database."""
    if tenant_id is None:
        return AuthContext(user_id=user_id, tenant_id=None)
    return AuthContext(user_id=user_id, tenant_id=tenant_id, roles=get_user_roles(user_id, tenant_id))


def user_in_tenant(user_id: int, tenant_id: int) -> bool:
    """A user belongs to a tenant iff they hold any role in it."""
    found = db.session.execute(
        select(UserRole.id).where(
            UserRole.user_id == user_id,
            UserRole.tenant_id == tenant_id,
        ).limit(1)
    ).scalar()
    return found is not None


def user_has_any_role(user_id: int, tenant_id: int, allowed: Iterable) -> bool:
    """Stored-role check for a user other than the caller (e.g. an approver)."""
    return bool(get_user_roles(user_id, tenant_id) & _as_roles(allowed))


def is_project_member(project_id: int, user_id: int) -> bool:
    found = db.session.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        ).limit(1)
    ).scalar()
    return found is not None
