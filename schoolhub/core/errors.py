from __future__ import annotations


class DomainError(Exception):
    """Base for every terminal error a service call can raise.

    ``code`` is a stable machine-readable identifier; ``message`` is the
    human-readable text shown to the caller.
    """

    status_code = 400
    default_code = 'error'

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return self.message


class AuthorizationError(DomainError, PermissionError):
    status_code = 403
    default_code = 'auth/forbidden'


class InvalidTransitionError(DomainError, ValueError):
    status_code = 409
    default_code = 'workflow/invalid-transition'


class ValidationError(DomainError, ValueError):
    status_code = 422
    default_code = 'validation/error'

    def __init__(self, field_errors: dict[str, str], message: str | None = None):
        self.field_errors = dict(field_errors)
        if message is None:
            first_field = next(iter(self.field_errors), None)
            message = self.field_errors[first_field] if first_field else 'Invalid input'
        super().__init__(message)


class ConflictError(DomainError, ValueError):
    status_code = 409
    default_code = 'conflict'


class NotFoundError(DomainError, LookupError):
    status_code = 404
    default_code = 'not-found'
