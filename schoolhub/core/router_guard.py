from __future__ import annotations

from fastapi import HTTPException, Request

from schoolhub.core.errors import AuthorizationError, DomainError, ValidationError
from schoolhub.core.identity import IdentityProvider, SessionIdentity, StaticIdentity
from schoolhub.services.auth_service import validate_session_token


def resolve_token(request: Request) -> str | None:
    token = request.cookies.get('auth_session')
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def require_identity(request: Request) -> IdentityProvider:
    """Resolves the session up front so unauthenticated calls fail with 401.

    The resolved principal is handed to services as a ``StaticIdentity``.
    """
    identity = SessionIdentity(resolve_token(request), validate_session_token)
    try:
        principal = identity.resolve()
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail={'code': exc.code, 'message': exc.message}) from exc
    return StaticIdentity(principal)


def domain_http_error(exc: DomainError) -> HTTPException:
    detail: dict = {'code': exc.code, 'message': exc.message}
    if isinstance(exc, ValidationError):
        detail['errors'] = exc.field_errors
    return HTTPException(status_code=exc.status_code, detail=detail)
