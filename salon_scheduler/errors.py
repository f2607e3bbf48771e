"""Error kinds raised by the scheduling core.

Each error carries a stable ``code`` so a transport layer can map it to a
response status without inspecting messages.
"""


class SchedulingError(Exception):
    """Base class for all errors raised by the scheduling core."""

    code = "scheduling_error"


class ValidationError(SchedulingError):
    """Malformed date, off-grid start time, or missing required field."""

    code = "validation_error"


class NotFoundError(SchedulingError):
    """Unknown resource, service offering, or booking."""

    code = "not_found"


class UnavailableError(SchedulingError):
    """Service not offered or resource closed on the requested day."""

    code = "unavailable"


class ConflictError(SchedulingError):
    """The requested slot is already held by an active booking."""

    code = "conflict"


class ForbiddenError(SchedulingError):
    """The acting user may not perform the operation on this booking."""

    code = "forbidden"


class InternalError(SchedulingError):
    """Persistence failure."""

    code = "internal_error"


class InvalidTransitionError(ValidationError):
    """Raised when a status transition is not valid from the current status."""

    code = "invalid_transition"


HTTP_STATUS_BY_CODE: dict[str, int] = {
    ValidationError.code: 400,
    InvalidTransitionError.code: 409,
    NotFoundError.code: 404,
    UnavailableError.code: 409,
    ConflictError.code: 409,
    ForbiddenError.code: 403,
    InternalError.code: 500,
    SchedulingError.code: 500,
}
