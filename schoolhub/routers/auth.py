from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from schoolhub.config import settings
from schoolhub.core.identity import IdentityProvider
from schoolhub.core.router_guard import require_identity, resolve_token
from schoolhub.db import get_db
from schoolhub.route_logging import EndpointNameRoute
from schoolhub.schemas import PasswordLoginRequest
from schoolhub.services.auth_service import AuthAuthenticationError, clear_session_token, login_password


router = APIRouter(tags=['Auth'], route_class=EndpointNameRoute)


def _session_cookie_response(data: dict) -> JSONResponse:
    response = JSONResponse(
        {
            'ok': True,
            'token': data['token'],
            'user_id': data['user_id'],
            'role': data['role'],
            'expires_at': data['expires_at'],
        }
    )
    response.set_cookie(
        key='auth_session',
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=settings.app_env not in ('local', 'test'),
        max_age=60 * 60 * max(1, int(settings.auth_session_expiry_hours or 12)),
    )
    return response


@router.post('/auth/login')
def auth_login(payload: PasswordLoginRequest, db: Session = Depends(get_db)):
    try:
        data = login_password(db, payload.email, payload.password)
    except AuthAuthenticationError as exc:
        raise HTTPException(status_code=401, detail={'code': 'auth/invalid-credentials', 'message': str(exc)}) from exc
    return _session_cookie_response(data)


@router.post('/auth/logout')
def auth_logout(request: Request):
    clear_session_token(resolve_token(request))
    response = JSONResponse({'ok': True})
    response.delete_cookie('auth_session')
    return response


@router.get('/auth/me')
def auth_me(identity: IdentityProvider = Depends(require_identity)):
    principal = identity.resolve()
    return {'id': principal.id, 'role': principal.role, 'name': principal.name, 'email': principal.email}
