"""Domain errors raised by services and rendered by the API layer."""


class DomainError(Exception):
    """Base exception for booking domain errors."""

    status_code = 400
    code = "domain_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(DomainError):
    """Malformed or out-of-policy input."""

    status_code = 422
    code = "validation_error"


class NotFoundError(DomainError):
    """Referenced companion, appointment or user does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, identifier=None, **context):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} {identifier} not found"
        super().__init__(message, resource=resource, **context)


class ConflictError(DomainError):
    """The request lost a race or duplicates an existing record."""

    status_code = 409
    code = "conflict"


class UnauthorizedError(DomainError):
    """Actor does not own the resource or lacks the required role."""

    status_code = 403
    code = "unauthorized"


class UpstreamError(DomainError):
    """Payment or calendar provider failure. Safe to retry."""

    status_code = 502
    code = "upstream_error"

    def __init__(self, message: str, service: str, **context):
        super().__init__(message, service=service, **context)
        self.service = service
