"""
Platform-wide exception hierarchy.

Every service raises one of these types. Each carries a stable,
machine-readable ``code`` (``ERR-AUTH-*``, ``ERR-VAL-*``, ``ERR-WF-*`` ...)
and a human-readable ``message`` as separate attributes — the code is
never embedded in, or parsed back out of, the message string.

Blueprints and ``run_action`` map these types to HTTP status codes and to
the ``{"success": false, "error": {"code", "message"}}`` result shape.

Usage:
    from backoffice.core.exceptions import ValidationError, NotFoundError

    raise ValidationError("ERR-VAL-001", "Title is required")
    raise NotFoundError("ERR-WF-003", "Workflow", workflow_id, tenant_id=tid)
"""


class AppError(Exception):
    """Base class for all typed service errors."""

    http_status = 400

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}

    def __repr__(self):
        return f"<{type(self).__name__} {self.code}: {self.message}>"


class AuthorizationError(AppError):
    """Insufficient role, or the caller is not the owner / approver / PM."""

    http_status = 403


class NoTenantError(AuthorizationError):
    """The acting user has no tenant context for the call."""

    http_status = 401

    def __init__(self, message: str = "Tenant not found for the current user") -> None:
        super().__init__("ERR-AUTH-003", message)


class ValidationError(AppError):
    """Input failed a field-level or referential business rule.

    Only the first failing rule is reported; services stop at the first
    violation.

    Args:
        code: ``ERR-VAL-*`` (or entity-specific) code of the failing rule.
        message: Human-readable explanation.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(code, message)


class StateTransitionError(AppError):
    """A status change outside the allowed transition table was requested."""

    http_status = 409

    def __init__(
        self,
        code: str,
        entity: str,
        current: str | None,
        requested: str,
        message: str | None = None,
    ) -> None:
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(
            code,
            message or f"Cannot change {entity} status from '{current}' to '{requested}'",
        )


class NotFoundError(AppError):
    """Raised when a requested resource does not exist within the caller's tenant.

    Security note: used for BOTH genuinely missing records AND cross-tenant
    lookups. The two cases are intentionally indistinguishable so that the
    existence of another tenant's rows is never disclosed.

    Args:
        code: Entity-specific code (``ERR-WF-003``, ``ERR-INV-001`` ...).
        resource: Human-readable entity name.
        resource_id: The PK that was looked up. Logged, not shown to users.
        tenant_id: The scope that was enforced. For debug logging only.
    """

    http_status = 404

    def __init__(
        self,
        code: str,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        super().__init__(code, f"{resource} not found")


class ConflictError(AppError):
    """A uniqueness rule would be violated."""

    http_status = 409


class SystemError(AppError):  # noqa: A001 - mirrors the ERR-SYS-* error family
    """Persistence or infrastructure failure, wrapping the underlying message."""

    http_status = 500

    def __init__(self, message: str, code: str = "ERR-SYS-001") -> None:
        super().__init__(code, message)
