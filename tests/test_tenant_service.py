"""
Tenant administration tests — profile, settings, soft delete / restore.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from backoffice.core.exceptions import AuthorizationError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditLog
from backoffice.models.auth import Tenant
from backoffice.services import tenant_service, workflow_service
from conftest import ctx_for, make_project, make_tenant, make_user


def _setup():
    t = make_tenant("Acme K.K.", "acme")
    admin = make_user(t, "admin@acme.example.com", roles=("tenant_admin",))
    it = make_user(t, "it@acme.example.com", roles=("it_admin",))
    member = make_user(t, "member@acme.example.com")
    db.session.commit()
    return t, admin, it, member


def _audit_count():
    return db.session.execute(select(func.count(AuditLog.id))).scalar()


class TestTenantDetail:
    def test_stats(self):
        t, admin, _, member = _setup()
        make_project(t, make_user(t, "pm@acme.example.com", roles=("pm",)))
        db.session.commit()
        workflow_service.create_workflow(ctx_for(member, t), {"title": "This month"})

        detail = tenant_service.get_tenant_detail(ctx_for(admin, t))

        assert detail["name"] == "Acme K.K."
        assert detail["stats"] == {"active_users": 4, "project_count": 1, "monthly_workflows": 1}

    def test_member_refused(self):
        t, _, _, member = _setup()
        with pytest.raises(AuthorizationError):
            tenant_service.get_tenant_detail(ctx_for(member, t))


class TestUpdateTenant:
    def test_rename_with_contact(self):
        t, admin, _, _ = _setup()
        updated = tenant_service.update_tenant(
            ctx_for(admin, t), {"name": "Acme Holdings", "contact_email": "info@acme.example.com", "address": "Tokyo"},
        )
        assert updated["name"] == "Acme Holdings"
        assert updated["settings"]["contact_email"] == "info@acme.example.com"
        assert updated["settings"]["address"] == "Tokyo"
        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.action == "tenant.update"
        assert log.before["name"] == "Acme K.K."

    def test_member_gets_auth_error_and_no_audit(self):
        t, _, _, member = _setup()
        with pytest.raises(AuthorizationError) as exc_info:
            tenant_service.update_tenant(ctx_for(member, t), {"name": "Hacked"})
        assert exc_info.value.code.startswith("ERR-AUTH")
        assert _audit_count() == 0
        assert db.session.get(Tenant, t.id).name == "Acme K.K."

    @pytest.mark.parametrize("data,code", [
        ({"name": ""}, "ERR-VAL-001"),
        ({"name": "x" * 101}, "ERR-VAL-002"),
        ({"name": "Acme", "contact_email": "not-an-email"}, "ERR-VAL-003"),
    ])
    def test_validation(self, data, code):
        t, admin, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            tenant_service.update_tenant(ctx_for(admin, t), data)
        assert exc_info.value.code == code


class TestTenantSettings:
    def test_merge(self):
        t, admin, _, _ = _setup()
        tenant_service.update_tenant_settings(ctx_for(admin, t), {"fiscal_year_start": 4})
        result = tenant_service.update_tenant_settings(ctx_for(admin, t), {"timezone": "Asia/Tokyo"})
        assert result["settings"] == {"fiscal_year_start": 4, "timezone": "Asia/Tokyo"}

    @pytest.mark.parametrize("month", [0, 13, "April"])
    def test_fiscal_month_range(self, month):
        t, admin, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            tenant_service.update_tenant_settings(ctx_for(admin, t), {"fiscal_year_start": month})
        assert exc_info.value.code == "ERR-VAL-004"

    def test_it_admin_may_change_settings(self):
        t, _, it, _ = _setup()
        result = tenant_service.update_tenant_settings(ctx_for(it, t), {"fiscal_year_start": "10"})
        assert result["settings"]["fiscal_year_start"] == 10


class TestSoftDelete:
    def test_requires_it_admin(self):
        t, admin, _, _ = _setup()
        with pytest.raises(AuthorizationError):
            tenant_service.delete_tenant(ctx_for(admin, t), "Acme K.K.")

    def test_confirmation_must_match(self):
        t, _, it, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            tenant_service.delete_tenant(ctx_for(it, t), "acme")
        assert exc_info.value.code == "ERR-VAL-005"
        assert db.session.get(Tenant, t.id).deleted_at is None

    def test_delete_and_restore(self):
        t, _, it, _ = _setup()
        deleted = tenant_service.delete_tenant(ctx_for(it, t), "Acme K.K.")
        assert deleted["deleted_at"] is not None
        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.action == "tenant.soft_delete"

        restored = tenant_service.restore_tenant(ctx_for(it, t))
        assert restored["deleted_at"] is None

    def test_restore_window_expired(self):
        t, _, it, _ = _setup()
        tenant = db.session.get(Tenant, t.id)
        tenant.deleted_at = datetime.now(timezone.utc) - timedelta(days=31)
        db.session.commit()
        with pytest.raises(ValidationError) as exc_info:
            tenant_service.restore_tenant(ctx_for(it, t))
        assert exc_info.value.code == "ERR-VAL-006"

    def test_restore_of_live_tenant_is_noop(self):
        t, _, it, _ = _setup()
        assert tenant_service.restore_tenant(ctx_for(it, t))["deleted_at"] is None
