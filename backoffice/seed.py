"""
Demo tenant seed.

Creates one tenant with a user per role and a sample project, and returns
an access token per user so the API can be exercised immediately:

    flask --app wsgi seed-demo --tenant "Demo Co."
"""

import logging
import re

from backoffice.core.auth_context import Role
from backoffice.models import db
from backoffice.models.auth import Tenant, User, UserRole
from backoffice.models.project import Project, ProjectMember
from backoffice.services.jwt_service import generate_access_token

logger = logging.getLogger(__name__)

# (email local part, display name, roles)
DEMO_USERS = (
    ("admin", "Tenant Admin", (Role.TENANT_ADMIN,)),
    ("it", "IT Admin", (Role.IT_ADMIN,)),
    ("pm", "Project Manager", (Role.PM, Role.APPROVER)),
    ("accounting", "Accounting", (Role.ACCOUNTING,)),
    ("approver", "Approver", (Role.APPROVER,)),
    ("member", "Team Member", (Role.MEMBER,)),
)


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "tenant"


def seed_demo_tenant(name: str) -> dict[str, str]:
    """Create the demo tenant; returns {email: access_token}."""
    slug = _slugify(name)
    tenant = Tenant(name=name, slug=slug, settings={"fiscal_year_start": 4})
    db.session.add(tenant)
    db.session.flush()

    users = {}
    for local, display_name, roles in DEMO_USERS:
        email = f"{local}@{slug}.example.com"
        user = db.session.execute(db.select(User).where(User.email == email)).scalar_one_or_none()
        if user is None:
            user = User(email=email, display_name=display_name, status="active")
            db.session.add(user)
            db.session.flush()
        for role in roles:
            db.session.add(UserRole(tenant_id=tenant.id, user_id=user.id, role=role.value))
        users[local] = user

    project = Project(
        tenant_id=tenant.id, name="Demo Project", status="active",
        pm_id=users["pm"].id, created_by=users["pm"].id,
    )
    db.session.add(project)
    db.session.flush()
    for local in ("pm", "member"):
        db.session.add(ProjectMember(tenant_id=tenant.id, project_id=project.id, user_id=users[local].id))
    db.session.commit()

    logger.info("Seeded demo tenant %s (%s users)", tenant.id, len(users), extra={"tenant_id": tenant.id})
    return {u.email: generate_access_token(u.id, tenant.id) for u in users.values()}
