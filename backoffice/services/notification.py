"""
Notification Service — in-app notification creation and inbox queries.

Creation is a side effect of workflow transitions (submitted → approver,
approved / rejected → creator). ``dispatch`` runs after the triggering
transaction has committed and never raises: a failed notification is
logged and dropped, the parent operation still succeeds.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from backoffice.core.auth_context import AuthContext
from backoffice.models import db
from backoffice.models.notification import Notification
from backoffice.services.permission import require_tenant

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, tenant_id, user_id, type, title, body=None,
               resource_type=None, resource_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            tenant_id=tenant_id,
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def dispatch(**kwargs):
        """Best-effort create: failures are logged, never propagated."""
        if kwargs.get("user_id") is None:
            return None
        try:
            return NotificationService.create(**kwargs)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(
                "Notification creation failed: type=%s user=%s",
                kwargs.get("type"), kwargs.get("user_id"),
                extra={"tenant_id": kwargs.get("tenant_id"), "event_type": "notification_failed"},
            )
            return None

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(ctx: AuthContext, unread_only=False, limit=None):
        """Latest notifications for the caller, newest first."""
        tenant_id = require_tenant(ctx)
        if limit is None:
            limit = current_app.config.get("NOTIFICATION_LIST_LIMIT", DEFAULT_LIST_LIMIT)
        q = select(Notification).where(
            Notification.tenant_id == tenant_id,
            Notification.user_id == ctx.user_id,
        )
        if unread_only:
            q = q.where(Notification.is_read.is_(False))
        q = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return [n.to_dict() for n in db.session.execute(q).scalars()]

    @staticmethod
    def unread_count(ctx: AuthContext):
        """Return count of unread notifications."""
        tenant_id = require_tenant(ctx)
        return db.session.execute(
            select(func.count(Notification.id)).where(
                Notification.tenant_id == tenant_id,
                Notification.user_id == ctx.user_id,
                Notification.is_read.is_(False),
            )
        ).scalar() or 0

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(ctx: AuthContext, notification_id):
        """Mark a single notification as read. Other users' rows are ignored."""
        tenant_id = require_tenant(ctx)
        notif = db.session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.tenant_id == tenant_id,
                Notification.user_id == ctx.user_id,
            )
        ).scalar_one_or_none()
        if notif is None:
            return None
        notif.mark_read()
        db.session.commit()
        return notif.to_dict()

    @staticmethod
    def mark_all_read(ctx: AuthContext):
        """Mark all of the caller's notifications as read; returns the count."""
        tenant_id = require_tenant(ctx)
        now = datetime.now(timezone.utc)
        result = db.session.execute(
            update(Notification)
            .where(
                Notification.tenant_id == tenant_id,
                Notification.user_id == ctx.user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount
