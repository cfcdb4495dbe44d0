"""
Acting-user context passed explicitly into every service call.

There is no ambient "current tenant": the caller (HTTP middleware, CLI,
tests) resolves the tenant and the user's roles in it, and hands the
resulting ``AuthContext`` to the service. A context whose ``tenant_id`` is
``None`` makes every tenant-scoped operation fail with ``NoTenantError``.
"""

import enum
from dataclasses import dataclass, field


class Role(str, enum.Enum):
    MEMBER = "member"
    APPROVER = "approver"
    PM = "pm"
    ACCOUNTING = "accounting"
    TENANT_ADMIN = "tenant_admin"
    IT_ADMIN = "it_admin"

    @classmethod
    def parse(cls, value) -> "Role":
        """Return the Role for *value*, raising ValueError on unknown names."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip())


# Roles that may be chosen as a workflow approver
APPROVER_ROLES = frozenset({Role.APPROVER, Role.TENANT_ADMIN})
# Expense approvers additionally include accounting
EXPENSE_APPROVER_ROLES = frozenset({Role.APPROVER, Role.ACCOUNTING, Role.TENANT_ADMIN})
ADMIN_ROLES = frozenset({Role.TENANT_ADMIN, Role.IT_ADMIN})


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    tenant_id: int | None
    roles: frozenset[Role] = field(default_factory=frozenset)

    @classmethod
    def build(cls, user_id: int, tenant_id: int | None, roles=()) -> "AuthContext":
        return cls(
            user_id=user_id,
            tenant_id=tenant_id,
            roles=frozenset(Role.parse(r) for r in roles),
        )

    def role_names(self) -> list[str]:
        return sorted(r.value for r in self.roles)
