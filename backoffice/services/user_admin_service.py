"""
User Administration Service — tenant membership, roles and account status.

Every operation requires tenant_admin or it_admin in the caller's tenant.

Guards:
    - nobody changes their own roles or disables their own account
    - only an it_admin may grant or revoke it_admin
    - a tenant always keeps at least one (active) tenant_admin

Invite and password-reset tokens are returned once to the caller for
out-of-band delivery; only their hashes are stored.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, or_, select

from backoffice.core.auth_context import ADMIN_ROLES, AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.auth import USER_STATUSES, User, UserRole
from backoffice.services import jwt_service
from backoffice.services.permission import get_user_roles, has_role, require_role, require_tenant
from backoffice.utils.helpers import clean_str, db_commit_or_raise, parse_int

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 25
MAX_PER_PAGE = 100


def _require_admin(ctx: AuthContext) -> int:
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, ADMIN_ROLES, message="User administration requires an admin role")
    return tenant_id


def _parse_roles(roles, code: str) -> list[Role]:
    parsed = []
    for name in roles or []:
        try:
            role = Role.parse(name)
        except ValueError:
            raise ValidationError(code, f"Unknown role: {name}", details={"roles": name}) from None
        if role not in parsed:
            parsed.append(role)
    if not parsed:
        raise ValidationError(code, "At least one role is required", details={"roles": "required"})
    return parsed


def _get_tenant_user(tenant_id: int, user_id) -> User:
    uid = parse_int(user_id)
    user = None
    if uid is not None:
        user = db.session.execute(
            select(User)
            .join(UserRole, UserRole.user_id == User.id)
            .where(User.id == uid, UserRole.tenant_id == tenant_id)
            .limit(1)
        ).scalar_one_or_none()
    if user is None:
        raise NotFoundError("ERR-VAL-009", "User", user_id, tenant_id=tenant_id)
    return user


def _other_tenant_admins(tenant_id: int, user_id: int, *, active_only=False) -> int:
    q = (
        select(func.count(func.distinct(UserRole.user_id)))
        .where(
            UserRole.tenant_id == tenant_id,
            UserRole.role == Role.TENANT_ADMIN.value,
            UserRole.user_id != user_id,
        )
    )
    if active_only:
        q = q.join(User, User.id == UserRole.user_id).where(User.status == "active")
    return db.session.execute(q).scalar() or 0


def _tenants_administered_by(user_id: int) -> list[int]:
    return db.session.execute(
        select(UserRole.tenant_id)
        .where(UserRole.user_id == user_id, UserRole.role == Role.TENANT_ADMIN.value)
        .distinct()
    ).scalars().all()


# ── List ─────────────────────────────────────────────────────────────────────


def list_users(ctx: AuthContext, search=None, role=None, status=None, page=1, per_page=DEFAULT_PER_PAGE) -> dict:
    """
    Paginated users of the caller's tenant.

    Returns:
        {"items": [...], "total": n, "page": p, "per_page": pp}
    """
    tenant_id = _require_admin(ctx)
    page = max(parse_int(page) or 1, 1)
    per_page = min(max(parse_int(per_page) or DEFAULT_PER_PAGE, 1), MAX_PER_PAGE)

    member_ids = select(UserRole.user_id).where(UserRole.tenant_id == tenant_id)
    if role:
        member_ids = member_ids.where(UserRole.role == role)
    q = select(User).where(User.id.in_(member_ids))

    search = clean_str(search)
    if search:
        pattern = f"%{search.lower()}%"
        q = q.where(or_(func.lower(User.email).like(pattern), func.lower(User.display_name).like(pattern)))
    if status and status != "all":
        if status not in USER_STATUSES:
            raise ValidationError("ERR-VAL-010", f"status must be one of {', '.join(USER_STATUSES)}")
        q = q.where(User.status == status)

    total = db.session.execute(select(func.count()).select_from(q.subquery())).scalar() or 0
    users = db.session.execute(
        q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * per_page).limit(per_page)
    ).scalars().all()

    return {
        "items": [u.to_dict(tenant_id=tenant_id) for u in users],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


# ── Invite ───────────────────────────────────────────────────────────────────


def invite_user(ctx: AuthContext, data: dict) -> dict:
    """
    Invite a user (by email) into the caller's tenant with *roles*.

    An email already known to the platform gets the roles in this tenant;
    a new email creates an ``invited`` user with a one-time invite token.
    """
    tenant_id = _require_admin(ctx)

    try:
        email = validate_email(clean_str(data.get("email")), check_deliverability=False).normalized
    except EmailNotValidError:
        raise ValidationError("ERR-VAL-001", "Enter a valid email address", details={"email": data.get("email")}) from None

    roles = _parse_roles(data.get("roles"), "ERR-VAL-002")
    if Role.IT_ADMIN in roles and not has_role(ctx, tenant_id, {Role.IT_ADMIN}):
        raise AuthorizationError("ERR-AUTH-004", "Only an IT admin can grant the it_admin role")

    user = db.session.execute(
        select(User).where(func.lower(User.email) == email.lower())
    ).scalar_one_or_none()
    if user is not None and get_user_roles(user.id, tenant_id):
        raise ValidationError("ERR-VAL-003", "This email address is already registered in the tenant")

    invite_token = None
    if user is None:
        invite_token, token_hash = jwt_service.generate_one_time_token()
        user = User(
            email=email,
            display_name=clean_str(data.get("display_name")) or email.split("@", 1)[0],
            status="invited",
            invite_token_hash=token_hash,
        )
        db.session.add(user)
        db.session.flush()

    for role in roles:
        db.session.add(UserRole(tenant_id=tenant_id, user_id=user.id, role=role.value))
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.USER_INVITE,
        resource_type="user",
        resource_id=user.id,
        after={"email": email, "roles": [r.value for r in roles]},
    )
    db_commit_or_raise()

    logger.info(
        "User %s invited with roles %s", user.id, [r.value for r in roles],
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "user.invite"},
    )
    result = user.to_dict(tenant_id=tenant_id)
    result["invite_token"] = invite_token
    return result


# ── Roles ────────────────────────────────────────────────────────────────────


def change_user_roles(ctx: AuthContext, user_id, roles) -> dict:
    """Replace the target user's roles in the caller's tenant."""
    tenant_id = _require_admin(ctx)
    target_id = parse_int(user_id)
    if target_id == ctx.user_id:
        raise ValidationError("ERR-VAL-004", "You cannot change your own roles")
    new_roles = _parse_roles(roles, "ERR-VAL-005")

    user = _get_tenant_user(tenant_id, target_id)
    current = get_user_roles(user.id, tenant_id)

    it_admin_changed = (Role.IT_ADMIN in current) != (Role.IT_ADMIN in new_roles)
    if it_admin_changed and not has_role(ctx, tenant_id, {Role.IT_ADMIN}):
        raise AuthorizationError("ERR-AUTH-005", "Only an IT admin can grant or revoke the it_admin role")

    if Role.TENANT_ADMIN in current and Role.TENANT_ADMIN not in new_roles:
        if _other_tenant_admins(tenant_id, user.id) == 0:
            raise ValidationError("ERR-VAL-006", "The tenant must keep at least one tenant_admin")

    existing = db.session.execute(
        select(UserRole).where(UserRole.tenant_id == tenant_id, UserRole.user_id == user.id)
    ).scalars().all()
    for row in existing:
        if Role(row.role) not in new_roles:
            db.session.delete(row)
    for role in new_roles:
        if role not in current:
            db.session.add(UserRole(tenant_id=tenant_id, user_id=user.id, role=role.value))
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.USER_ROLE_CHANGE,
        resource_type="user",
        resource_id=user.id,
        before={"roles": sorted(r.value for r in current)},
        after={"roles": sorted(r.value for r in new_roles)},
    )
    db_commit_or_raise()
    return {"user_id": user.id, "roles": sorted(r.value for r in new_roles)}


# ── Status ───────────────────────────────────────────────────────────────────


def change_user_status(ctx: AuthContext, user_id, action: str) -> dict:
    """``action`` is ``disable`` or ``enable``."""
    tenant_id = _require_admin(ctx)
    target_id = parse_int(user_id)
    if action not in ("disable", "enable"):
        raise ValidationError("ERR-VAL-010", "action must be disable or enable")
    if target_id == ctx.user_id:
        raise ValidationError("ERR-VAL-007", "You cannot disable your own account")

    user = _get_tenant_user(tenant_id, target_id)
    disabling = action == "disable"
    # Account status is global, so every tenant the user administers must keep an admin.
    if disabling:
        for admin_tenant_id in _tenants_administered_by(user.id):
            if _other_tenant_admins(admin_tenant_id, user.id, active_only=True) == 0:
                raise ValidationError("ERR-VAL-008", "The tenant must keep at least one active tenant_admin")

    before_status = user.status
    user.status = "disabled" if disabling else "active"
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.USER_DEACTIVATE if disabling else AuditAction.USER_REACTIVATE,
        resource_type="user",
        resource_id=user.id,
        before={"status": before_status},
        after={"status": user.status},
    )
    db_commit_or_raise()
    return user.to_dict(tenant_id=tenant_id)


def activate_user(ctx: AuthContext, user_id) -> dict:
    """Move an invited user to active and retire the invite token."""
    tenant_id = _require_admin(ctx)
    user = _get_tenant_user(tenant_id, user_id)
    if user.status != "invited":
        raise ValidationError("ERR-VAL-011", f"Only invited users can be activated (status: {user.status})")

    user.status = "active"
    user.invite_token_hash = None
    db.session.flush()
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.USER_ACTIVATE,
        resource_type="user",
        resource_id=user.id,
        before={"status": "invited"},
        after={"status": "active"},
    )
    db_commit_or_raise()
    return user.to_dict(tenant_id=tenant_id)


def reset_password(ctx: AuthContext, user_id) -> dict:
    """Issue a password-reset token for a tenant user."""
    tenant_id = _require_admin(ctx)
    user = _get_tenant_user(tenant_id, user_id)

    raw, token_hash = jwt_service.generate_one_time_token()
    user.reset_token_hash = token_hash
    user.reset_expires_at = jwt_service.reset_token_expiry()
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.USER_PASSWORD_RESET,
        resource_type="user",
        resource_id=user.id,
        metadata={"email": user.email},
    )
    db_commit_or_raise()
    return {
        "user_id": user.id,
        "reset_token": raw,
        "expires_at": user.reset_expires_at.isoformat(),
    }
