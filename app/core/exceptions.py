"""
Platform-wide exception hierarchy.

Services raise these types; ``app.blueprints.register_error_handlers`` maps
each one to an HTTP status exactly once, so no blueprint carries its own
try/except ladder for domain failures.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Report", resource_id=42)
    raise ValidationError("status is required", details={"status": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the caller's scope.

    Used for BOTH genuinely missing records AND records outside the
    principal's visibility scope. A 403 would confirm the record exists;
    a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Report").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is missing, malformed or outside a closed value set.

    Maps to HTTP 400. Never retried automatically.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(Exception):
    """Raised when no valid principal is attached to the request. Maps to 401."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when the principal's stored role does not allow the action.

    Maps to HTTP 403. Logged for audit by the error handler.
    """

    def __init__(self, principal_id: int | None, required: str, message: str | None = None) -> None:
        self.principal_id = principal_id
        self.required = required
        super().__init__(message or f"Access as {required.replace('_', ' ')} is not permitted")


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class InvalidTransitionError(Exception):
    """Raised when a status change is not an edge of the entity's state machine.

    Maps to HTTP 409.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(self, entity: str, current: str, target: str | None, reason: str | None = None) -> None:
        self.entity = entity
        self.current_status = current
        self.target_status = target
        msg = f"Cannot move {entity} from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class OutOfSequenceTransitionError(InvalidTransitionError):
    """Raised when a role acts on a report before its turn in the approval chain."""

    code = "ERR_OUT_OF_SEQUENCE"

    def __init__(self, report_id: int, current: str, role: str, expected: str | None) -> None:
        self.report_id = report_id
        self.role = role
        self.expected_role = expected
        if expected:
            reason = f"waiting for {expected.replace('_', ' ')}, not {role.replace('_', ' ')}"
        else:
            reason = "no further approvals are expected"
        super().__init__(f"Report {report_id}", current, None, reason)


class ChainHaltedError(InvalidTransitionError):
    """Raised when a report's approval chain has already ended (rejected, issued, closed)."""

    code = "ERR_CHAIN_HALTED"

    def __init__(self, report_id: int, current: str) -> None:
        self.report_id = report_id
        super().__init__(
            f"Report {report_id}", current, None,
            "the approval chain has ended and accepts no further decisions",
        )


class ConflictingTransitionError(Exception):
    """Raised when a compare-and-set on a status column finds a different value.

    Another request changed the row between our read and our write. Maps to
    HTTP 409; the approval service retries once before surfacing it.
    """

    def __init__(self, entity: str, entity_id: int, expected: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected status '{expected}')"
        )


class PersistenceError(Exception):
    """Raised when the storage layer fails. Maps to HTTP 500 with a generic message."""
