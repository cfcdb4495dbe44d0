"""
Timesheet domain model.

One row per (user, work_date, project, task) with hours in 0.25 steps.
The unique constraint covers rows with a task; rows without a task are
de-duplicated by timesheet_service since NULLs never collide in SQL.
"""

from backoffice.models import db
from backoffice.models.base import TenantModel, iso, utcnow

MIN_HOURS = 0.25
MAX_HOURS = 24
HOURS_STEP = 0.25
DAILY_HOURS_CAP = 24


class Timesheet(TenantModel):
    __tablename__ = "timesheets"
    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "work_date", "project_id", "task_id", name="uq_timesheet_user_date_project_task",
        ),
        db.Index("ix_timesheets_user_date", "user_id", "work_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="RESTRICT"), nullable=True, index=True)
    work_date = db.Column(db.Date, nullable=False)
    hours = db.Column(db.Float, nullable=False)
    note = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "work_date": iso(self.work_date),
            "hours": self.hours,
            "note": self.note,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Timesheet {self.id}: user={self.user_id} {self.work_date} {self.hours}h>"
