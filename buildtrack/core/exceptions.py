"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from buildtrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Guitar", resource_id=guitar_id)
    raise ValidationError("A note is required for this stage", details={"message": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is not visible.

    Also used when a client asks for another client's record: a 403 would
    confirm the record exists, a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Guitar", "Run").
        resource_id: The key that was looked up. Included in logs.
    """

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Examples: advancing to a stage of another run, skipping a required
    note, recording a payment of zero.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write would clash with existing or newer state.

    Covers duplicate unique values and stale optimistic-concurrency
    checks (e.g. a stage change based on an outdated current stage).

    Args:
        resource: Model name.
        field: The field that conflicts.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised when the acting user's role lacks a capability."""

    def __init__(self, user_id: str | None, capability: str) -> None:
        super().__init__(f"User {user_id} does not have permission for '{capability}'")
        self.user_id = user_id
        self.capability = capability


class CallableError(Exception):
    """Structured error returned by ``/api/v1/functions/<name>`` endpoints.

    ``code`` is one of the callable error codes in
    ``buildtrack.utils.errors.E`` (``unauthenticated``,
    ``permission-denied``, ``invalid-argument``, ``failed-precondition``,
    ``not-found``, ``internal``); the client SDK keys off it.
    """

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")
