"""
Project and task service tests.

Covers:
    - project creation (PM auto-membership, role gate)
    - status transitions through update_project
    - member add / remove guards
    - task CRUD, status changes and the logged-hours delete guard
"""

from datetime import date

import pytest
from sqlalchemy import select

from backoffice.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from backoffice.models import db
from backoffice.models.audit import AuditLog
from backoffice.models.project import ProjectMember, Task
from backoffice.models.timesheet import Timesheet
from backoffice.services import project_service, task_service
from conftest import ctx_for, make_project, make_tenant, make_user


def _setup():
    t = make_tenant()
    pm = make_user(t, "pm@acme.example.com", roles=("pm",))
    member = make_user(t, "member@acme.example.com")
    admin = make_user(t, "admin@acme.example.com", roles=("tenant_admin",))
    db.session.commit()
    return t, pm, member, admin


def _project(t, pm, **extra):
    return project_service.create_project(ctx_for(pm, t), {"name": "ERP rollout", **extra})


# ═════════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateProject:
    def test_pm_becomes_member(self):
        t, pm, _, _ = _setup()
        p = _project(t, pm)
        assert p["status"] == "planning"
        assert p["pm_id"] == pm.id
        assert p["member_ids"] == [pm.id]

    def test_admin_assigns_another_pm(self):
        t, pm, _, admin = _setup()
        p = project_service.create_project(ctx_for(admin, t), {"name": "Ops", "pm_id": pm.id})
        assert p["pm_id"] == pm.id
        assert p["member_ids"] == [pm.id]

    def test_member_cannot_create(self):
        t, _, member, _ = _setup()
        with pytest.raises(AuthorizationError) as exc_info:
            project_service.create_project(ctx_for(member, t), {"name": "Rogue"})
        assert exc_info.value.code == "ERR-AUTH-003"

    @pytest.mark.parametrize("data,code", [
        ({"name": ""}, "ERR-VAL-001"),
        ({"name": "x" * 101}, "ERR-VAL-002"),
        ({"name": "P", "start_date": "2026-05-01", "end_date": "2026-04-01"}, "ERR-VAL-003"),
    ])
    def test_validation(self, data, code):
        t, pm, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            project_service.create_project(ctx_for(pm, t), data)
        assert exc_info.value.code == code

    def test_pm_from_other_tenant_rejected(self):
        t, pm, _, _ = _setup()
        outsider = make_user(make_tenant("Other", "other"), "o@other.example.com", roles=("pm",))
        db.session.commit()
        with pytest.raises(ValidationError) as exc_info:
            project_service.create_project(ctx_for(pm, t), {"name": "P", "pm_id": outsider.id})
        assert exc_info.value.code == "ERR-VAL-004"


class TestUpdateProject:
    def test_status_transition_is_audited(self):
        t, pm, _, _ = _setup()
        p = _project(t, pm)
        updated = project_service.update_project(ctx_for(pm, t), p["id"], {"status": "active"})
        assert updated["status"] == "active"
        actions = db.session.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars().all()
        assert actions == ["project.create", "project.status_change"]

    def test_disallowed_transition(self):
        t, pm, _, _ = _setup()
        p = _project(t, pm)
        with pytest.raises(StateTransitionError) as exc_info:
            project_service.update_project(ctx_for(pm, t), p["id"], {"status": "completed"})
        assert exc_info.value.code == "ERR-PJ-002"

    def test_non_manager_refused(self):
        t, pm, member, _ = _setup()
        p = _project(t, pm)
        with pytest.raises(AuthorizationError):
            project_service.update_project(ctx_for(member, t), p["id"], {"name": "Renamed"})

    def test_new_pm_joins_members(self):
        t, pm, _, admin = _setup()
        other_pm = make_user(t, "pm2@acme.example.com", roles=("pm",))
        db.session.commit()
        p = _project(t, pm)
        updated = project_service.update_project(ctx_for(admin, t), p["id"], {"pm_id": other_pm.id})
        assert other_pm.id in updated["member_ids"]


class TestMembers:
    def test_add_and_remove(self):
        t, pm, member, _ = _setup()
        p = _project(t, pm)
        project_service.add_member(ctx_for(pm, t), p["id"], member.id)
        assert member.id in project_service.get_project(ctx_for(pm, t), p["id"])["member_ids"]

        project_service.remove_member(ctx_for(pm, t), p["id"], member.id)
        assert project_service.get_project(ctx_for(pm, t), p["id"])["member_ids"] == [pm.id]

    def test_duplicate_member_conflicts(self):
        t, pm, member, _ = _setup()
        p = _project(t, pm)
        project_service.add_member(ctx_for(pm, t), p["id"], member.id)
        with pytest.raises(ConflictError) as exc_info:
            project_service.add_member(ctx_for(pm, t), p["id"], member.id)
        assert exc_info.value.code == "ERR-PJ-003"

    def test_pm_cannot_be_removed(self):
        t, pm, _, _ = _setup()
        p = _project(t, pm)
        with pytest.raises(ValidationError) as exc_info:
            project_service.remove_member(ctx_for(pm, t), p["id"], pm.id)
        assert exc_info.value.code == "ERR-PJ-004"

    def test_outsider_cannot_be_added(self):
        t, pm, _, _ = _setup()
        outsider = make_user(make_tenant("Other", "other"), "o@other.example.com")
        db.session.commit()
        p = _project(t, pm)
        with pytest.raises(ValidationError) as exc_info:
            project_service.add_member(ctx_for(pm, t), p["id"], outsider.id)
        assert exc_info.value.code == "ERR-VAL-005"

    def test_list_mine(self):
        t, pm, member, _ = _setup()
        p = _project(t, pm)
        _project(t, pm, name="Second")
        project_service.add_member(ctx_for(pm, t), p["id"], member.id)
        mine = project_service.list_projects(ctx_for(member, t), mine=True)
        assert [x["id"] for x in mine] == [p["id"]]
        assert len(project_service.list_projects(ctx_for(member, t))) == 2

    def test_tenant_users(self):
        t, pm, member, admin = _setup()
        emails = {u["email"] for u in project_service.get_tenant_users(ctx_for(member, t))}
        assert emails == {"pm@acme.example.com", "member@acme.example.com", "admin@acme.example.com"}


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════


class TestTasks:
    def _project_with_member(self):
        t, pm, member, admin = _setup()
        p = make_project(t, pm, members=(member,))
        db.session.commit()
        return t, pm, member, admin, p

    def test_create_defaults_to_todo(self):
        t, pm, member, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Design", "assignee_id": member.id})
        assert task["status"] == "todo"
        assert task["assignee_id"] == member.id

    def test_assignee_must_be_member(self):
        t, pm, _, admin, p = self._project_with_member()
        with pytest.raises(ValidationError) as exc_info:
            task_service.create_task(ctx_for(pm, t), p.id, {"title": "Design", "assignee_id": admin.id})
        assert exc_info.value.code == "ERR-VAL-005"

    def test_member_cannot_create(self):
        t, _, member, _, p = self._project_with_member()
        with pytest.raises(AuthorizationError):
            task_service.create_task(ctx_for(member, t), p.id, {"title": "Design"})

    def test_assignee_moves_status(self):
        t, pm, member, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Build", "assignee_id": member.id})
        moved = task_service.update_task_status(ctx_for(member, t), task["id"], "in_progress")
        assert moved["status"] == "in_progress"

    def test_skip_to_done_is_disallowed(self):
        t, pm, _, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Build"})
        with pytest.raises(StateTransitionError) as exc_info:
            task_service.update_task_status(ctx_for(pm, t), task["id"], "done")
        assert exc_info.value.code == "ERR-TASK-002"

    def test_unknown_status(self):
        t, pm, _, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Build"})
        with pytest.raises(ValidationError) as exc_info:
            task_service.update_task_status(ctx_for(pm, t), task["id"], "blocked")
        assert exc_info.value.code == "ERR-VAL-004"

    def test_unassigned_member_cannot_edit(self):
        t, pm, member, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Build"})
        with pytest.raises(AuthorizationError):
            task_service.update_task(ctx_for(member, t), task["id"], {"title": "Mine now"})

    def test_update_fields(self):
        t, pm, member, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Build"})
        updated = task_service.update_task(
            ctx_for(pm, t), task["id"], {"title": "Build v2", "due_date": "2026-06-30", "assignee_id": member.id},
        )
        assert updated["title"] == "Build v2"
        assert updated["due_date"] == "2026-06-30"

    def test_delete_without_hours(self):
        t, pm, _, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Scratch"})
        assert task_service.delete_task(ctx_for(pm, t), task["id"]) == {"id": task["id"], "deleted": True}
        assert db.session.get(Task, task["id"]) is None

    def test_delete_with_logged_hours_is_blocked(self):
        t, pm, member, _, p = self._project_with_member()
        task = task_service.create_task(ctx_for(pm, t), p.id, {"title": "Logged"})
        db.session.add(Timesheet(
            tenant_id=t.id, user_id=member.id, project_id=p.id, task_id=task["id"],
            work_date=date(2026, 1, 12), hours=2,
        ))
        db.session.commit()

        with pytest.raises(ValidationError) as exc_info:
            task_service.delete_task(ctx_for(pm, t), task["id"])
        assert exc_info.value.code == "ERR-TASK-003"
        assert exc_info.value.details == {"timesheets": 1}

    def test_list_requires_membership(self):
        t, pm, member, _, p = self._project_with_member()
        outsider = make_user(t, "outsider@acme.example.com")
        db.session.commit()
        task_service.create_task(ctx_for(pm, t), p.id, {"title": "Visible"})
        assert len(task_service.list_tasks(ctx_for(member, t), p.id)) == 1
        with pytest.raises(AuthorizationError):
            task_service.list_tasks(ctx_for(outsider, t), p.id)

    def test_foreign_project_not_found(self):
        t, pm, _, _, p = self._project_with_member()
        other = make_tenant("Other", "other")
        other_pm = make_user(other, "pm@other.example.com", roles=("pm",))
        db.session.commit()
        with pytest.raises(NotFoundError) as exc_info:
            task_service.create_task(ctx_for(other_pm, other), p.id, {"title": "X"})
        assert exc_info.value.code == "ERR-PJ-001"

    def test_members_table_has_pm_row(self):
        t, pm, _, _ = _setup()
        p = _project(t, pm)
        rows = db.session.execute(
            select(ProjectMember.user_id).where(ProjectMember.project_id == p["id"])
        ).scalars().all()
        assert rows == [pm.id]
