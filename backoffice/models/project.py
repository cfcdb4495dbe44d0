"""
Project domain model.

Models:
    - Project: unit of delivery with a PM and a member list
    - ProjectMember: membership junction (PM row created with the project)
    - Task: kanban task belonging to one project
"""

from backoffice.models import db
from backoffice.models.base import TenantModel, iso, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = ("planning", "active", "completed", "cancelled")
PROJECT_NAME_MAX = 100

TASK_STATUSES = ("todo", "in_progress", "done")
TASK_TITLE_MAX = 200


# ═══════════════════════════════════════════════════════════════
# PROJECTS
# ═══════════════════════════════════════════════════════════════
class Project(TenantModel):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(PROJECT_NAME_MAX), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="planning")
    pm_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members = db.relationship(
        "ProjectMember", back_populates="project", cascade="all, delete-orphan", lazy="select",
    )

    def member_ids(self):
        return sorted(m.user_id for m in self.members)

    def to_dict(self, include_members=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "pm_id": self.pm_id,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_members:
            d["member_ids"] = self.member_ids()
        return d

    def __repr__(self):
        return f"<Project {self.id}: {self.name} [{self.status}]>"


class ProjectMember(TenantModel):
    __tablename__ = "project_members"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    project = db.relationship("Project", back_populates="members")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "created_at": iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════
# TASKS
# ═══════════════════════════════════════════════════════════════
class Task(TenantModel):
    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("ix_tasks_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(TASK_TITLE_MAX), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="todo")
    assignee_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = db.Column(db.Date, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "assignee_id": self.assignee_id,
            "due_date": iso(self.due_date),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}]>"
