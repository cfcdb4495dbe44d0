"""
User administration tests.

Categories:
    1. Listing / search / pagination
    2. Invitations (new + existing global user)
    3. Role changes and their guards
    4. Enable / disable / activate / reset password
"""

import pytest
from sqlalchemy import select

from backoffice.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditLog
from backoffice.models.auth import User, UserRole
from backoffice.services import user_admin_service
from backoffice.services.jwt_service import hash_token
from backoffice.services.permission import get_user_roles
from conftest import ctx_for, make_tenant, make_user


def _setup():
    t = make_tenant()
    admin = make_user(t, "admin@acme.example.com", roles=("tenant_admin",))
    it = make_user(t, "it@acme.example.com", roles=("it_admin",))
    member = make_user(t, "member@acme.example.com", display_name="Hanako")
    db.session.commit()
    return t, admin, it, member


# ═════════════════════════════════════════════════════════════════════════════
# 1. Listing
# ═════════════════════════════════════════════════════════════════════════════


class TestListUsers:
    def test_lists_tenant_users_with_roles(self):
        t, admin, _, _ = _setup()
        make_user(make_tenant("Other", "other"), "stranger@other.example.com")
        db.session.commit()
        result = user_admin_service.list_users(ctx_for(admin, t))
        assert result["total"] == 3
        emails = {u["email"]: u["roles"] for u in result["items"]}
        assert emails["admin@acme.example.com"] == ["tenant_admin"]
        assert "stranger@other.example.com" not in emails

    def test_search_and_role_filter(self):
        t, admin, _, _ = _setup()
        assert [u["email"] for u in user_admin_service.list_users(ctx_for(admin, t), search="hana")["items"]] == [
            "member@acme.example.com",
        ]
        assert user_admin_service.list_users(ctx_for(admin, t), role="it_admin")["total"] == 1

    def test_pagination(self):
        t, admin, _, _ = _setup()
        page = user_admin_service.list_users(ctx_for(admin, t), page=2, per_page=2)
        assert page["total"] == 3
        assert len(page["items"]) == 1

    def test_member_refused(self):
        t, _, _, member = _setup()
        with pytest.raises(AuthorizationError):
            user_admin_service.list_users(ctx_for(member, t))


# ═════════════════════════════════════════════════════════════════════════════
# 2. Invitations
# ═════════════════════════════════════════════════════════════════════════════


class TestInvite:
    def test_new_user_is_invited(self):
        t, admin, _, _ = _setup()
        result = user_admin_service.invite_user(ctx_for(admin, t), {"email": "New@Acme.example.com", "roles": ["member", "pm"]})

        assert result["status"] == "invited"
        assert result["roles"] == ["member", "pm"]
        assert result["invite_token"]
        user = db.session.get(User, result["id"])
        assert user.invite_token_hash == hash_token(result["invite_token"])
        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.action == "user.invite"

    def test_existing_global_user_joins(self):
        t, admin, _, _ = _setup()
        other = make_tenant("Other", "other")
        known = make_user(other, "known@other.example.com")
        db.session.commit()

        result = user_admin_service.invite_user(ctx_for(admin, t), {"email": "known@other.example.com", "roles": ["approver"]})

        assert result["id"] == known.id
        assert result["invite_token"] is None
        assert result["status"] == "active"
        assert [r.value for r in get_user_roles(known.id, t.id)] == ["approver"]

    def test_already_in_tenant(self):
        t, admin, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.invite_user(ctx_for(admin, t), {"email": "member@acme.example.com", "roles": ["pm"]})
        assert exc_info.value.code == "ERR-VAL-003"

    @pytest.mark.parametrize("data,code", [
        ({"email": "nope", "roles": ["member"]}, "ERR-VAL-001"),
        ({"email": "x@acme.example.com", "roles": []}, "ERR-VAL-002"),
        ({"email": "x@acme.example.com", "roles": ["wizard"]}, "ERR-VAL-002"),
    ])
    def test_validation(self, data, code):
        t, admin, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.invite_user(ctx_for(admin, t), data)
        assert exc_info.value.code == code

    def test_only_it_admin_grants_it_admin(self):
        t, admin, it, _ = _setup()
        with pytest.raises(AuthorizationError) as exc_info:
            user_admin_service.invite_user(ctx_for(admin, t), {"email": "ops@acme.example.com", "roles": ["it_admin"]})
        assert exc_info.value.code == "ERR-AUTH-004"
        result = user_admin_service.invite_user(ctx_for(it, t), {"email": "ops@acme.example.com", "roles": ["it_admin"]})
        assert result["roles"] == ["it_admin"]


# ═════════════════════════════════════════════════════════════════════════════
# 3. Role changes
# ═════════════════════════════════════════════════════════════════════════════


class TestChangeRoles:
    def test_replace_roles(self):
        t, admin, _, member = _setup()
        result = user_admin_service.change_user_roles(ctx_for(admin, t), member.id, ["approver", "pm"])
        assert result == {"user_id": member.id, "roles": ["approver", "pm"]}
        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.before == {"roles": ["member"]}
        assert log.after == {"roles": ["approver", "pm"]}

    def test_cannot_change_own_roles(self):
        t, admin, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.change_user_roles(ctx_for(admin, t), admin.id, ["member"])
        assert exc_info.value.code == "ERR-VAL-004"

    def test_last_tenant_admin_kept(self):
        t, admin, it, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.change_user_roles(ctx_for(it, t), admin.id, ["member"])
        assert exc_info.value.code == "ERR-VAL-006"
        assert [r.value for r in get_user_roles(admin.id, t.id)] == ["tenant_admin"]

    def test_second_admin_allows_demotion(self):
        t, admin, it, member = _setup()
        user_admin_service.change_user_roles(ctx_for(admin, t), member.id, ["tenant_admin"])
        user_admin_service.change_user_roles(ctx_for(it, t), admin.id, ["member"])
        assert [r.value for r in get_user_roles(admin.id, t.id)] == ["member"]

    def test_it_admin_guard_on_revoke(self):
        t, admin, it, _ = _setup()
        with pytest.raises(AuthorizationError) as exc_info:
            user_admin_service.change_user_roles(ctx_for(admin, t), it.id, ["member"])
        assert exc_info.value.code == "ERR-AUTH-005"

    def test_it_admin_guard_on_grant(self):
        t, admin, _, member = _setup()
        with pytest.raises(AuthorizationError):
            user_admin_service.change_user_roles(ctx_for(admin, t), member.id, ["it_admin"])

    def test_unknown_user(self):
        t, admin, _, _ = _setup()
        with pytest.raises(NotFoundError):
            user_admin_service.change_user_roles(ctx_for(admin, t), 999, ["member"])


# ═════════════════════════════════════════════════════════════════════════════
# 4. Status
# ═════════════════════════════════════════════════════════════════════════════


class TestUserStatus:
    def test_disable_and_enable(self):
        t, admin, _, member = _setup()
        assert user_admin_service.change_user_status(ctx_for(admin, t), member.id, "disable")["status"] == "disabled"
        assert user_admin_service.change_user_status(ctx_for(admin, t), member.id, "enable")["status"] == "active"
        actions = db.session.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars().all()
        assert actions == ["user.deactivate", "user.reactivate"]

    def test_cannot_disable_self(self):
        t, admin, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.change_user_status(ctx_for(admin, t), admin.id, "disable")
        assert exc_info.value.code == "ERR-VAL-007"

    def test_last_active_admin_kept(self):
        t, admin, it, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.change_user_status(ctx_for(it, t), admin.id, "disable")
        assert exc_info.value.code == "ERR-VAL-008"

    def test_sole_admin_of_another_tenant_kept(self):
        t, admin, _, _ = _setup()
        beta = make_tenant("Beta Inc.", "beta")
        shared = make_user(beta, "shared@beta.example.com", roles=("tenant_admin",))
        db.session.add(UserRole(tenant_id=t.id, user_id=shared.id, role="member"))
        db.session.commit()

        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.change_user_status(ctx_for(admin, t), shared.id, "disable")
        assert exc_info.value.code == "ERR-VAL-008"
        assert db.session.get(User, shared.id).status == "active"

    def test_admin_elsewhere_with_backup_can_be_disabled(self):
        t, admin, _, _ = _setup()
        beta = make_tenant("Beta Inc.", "beta")
        shared = make_user(beta, "shared@beta.example.com", roles=("tenant_admin",))
        make_user(beta, "backup@beta.example.com", roles=("tenant_admin",))
        db.session.add(UserRole(tenant_id=t.id, user_id=shared.id, role="member"))
        db.session.commit()

        result = user_admin_service.change_user_status(ctx_for(admin, t), shared.id, "disable")
        assert result["status"] == "disabled"

    def test_activate_invited(self):
        t, admin, _, _ = _setup()
        invited = user_admin_service.invite_user(ctx_for(admin, t), {"email": "late@acme.example.com", "roles": ["member"]})
        activated = user_admin_service.activate_user(ctx_for(admin, t), invited["id"])
        assert activated["status"] == "active"
        assert db.session.get(User, invited["id"]).invite_token_hash is None

    def test_activate_active_user_refused(self):
        t, admin, _, member = _setup()
        with pytest.raises(ValidationError) as exc_info:
            user_admin_service.activate_user(ctx_for(admin, t), member.id)
        assert exc_info.value.code == "ERR-VAL-011"

    def test_reset_password(self):
        t, admin, _, member = _setup()
        result = user_admin_service.reset_password(ctx_for(admin, t), member.id)
        user = db.session.get(User, member.id)
        assert user.reset_token_hash == hash_token(result["reset_token"])
        assert result["expires_at"]
        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.action == "user.password_reset"
        assert log.meta == {"email": "member@acme.example.com"}
