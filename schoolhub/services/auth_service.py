from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from schoolhub.config import settings
from schoolhub.core.time_provider import TimeProvider, default_time_provider
from schoolhub.models import AuthUser, Role


logger = logging.getLogger(__name__)

PASSWORD_SCHEME = 'pbkdf2_sha256'
PASSWORD_ITERATIONS = 120000
MIN_PASSWORD_LENGTH = 8

_TOKEN_HEADER = {'alg': 'HS256', 'typ': 'JWT'}
_VALID_ROLES = frozenset(role.value for role in Role)

# token -> exp timestamp; entries are dropped once they would have expired anyway
_revoked: dict[str, int] = {}
_revoked_lock = threading.RLock()


class AuthAuthenticationError(ValueError):
    """Raised when credentials do not match an active account."""


def _clean_email(email: str) -> str:
    return (email or '').strip().lower()


def _masked(email: str) -> str:
    local, _, domain = _clean_email(email).partition('@')
    return f'{local[:1]}***@{domain}' if domain else '***'


def _pbkdf2(password: str, salt: str, iterations: int) -> str:
    return hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), iterations).hex()


def hash_password(password: str) -> str:
    if len(password or '') < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    salt = secrets.token_hex(16)
    return '$'.join((PASSWORD_SCHEME, str(PASSWORD_ITERATIONS), salt, _pbkdf2(password, salt, PASSWORD_ITERATIONS)))


def verify_password(password: str, password_hash: str) -> bool:
    parts = (password_hash or '').split('$', 3)
    if len(parts) != 4 or parts[0] != PASSWORD_SCHEME or not parts[1].isdigit():
        return False
    _, iterations, salt, digest_hex = parts
    return hmac.compare_digest(_pbkdf2(password, salt, int(iterations)), digest_hex)


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _unb64(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + '=' * (-len(value) % 4))


def _signature(signing_input: str) -> bytes:
    return hmac.new(settings.auth_secret.encode('utf-8'), signing_input.encode('ascii'), hashlib.sha256).digest()


def _sign(claims: dict) -> str:
    segments = [_b64(json.dumps(part, separators=(',', ':')).encode('utf-8')) for part in (_TOKEN_HEADER, claims)]
    signing_input = '.'.join(segments)
    return f'{signing_input}.{_b64(_signature(signing_input))}'


def _verified_claims(token: str) -> dict | None:
    segments = token.split('.')
    if len(segments) != 3:
        return None
    signing_input = f'{segments[0]}.{segments[1]}'
    try:
        if not hmac.compare_digest(_unb64(segments[2]), _signature(signing_input)):
            return None
        claims = json.loads(_unb64(segments[1]).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


def _session_ttl() -> timedelta:
    return timedelta(hours=max(1, int(settings.auth_session_expiry_hours or 12)))


def issue_session_token(user: AuthUser, *, time_provider: TimeProvider = default_time_provider) -> dict:
    issued_at = time_provider.now()
    expires_at = issued_at + _session_ttl()
    session = {'user_id': user.id, 'email': user.email, 'name': user.name, 'role': user.role}
    token = _sign(
        {
            'sub': user.id,
            'email': user.email,
            'name': user.name,
            'role': user.role,
            'iat': int(issued_at.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
    )
    return {'token': token, **session, 'expires_at': expires_at.isoformat()}


def login_password(
    db: Session,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Checks email/password against ``auth_users`` and issues a session token.

    Unknown, inactive and password-less accounts fail the same way as a wrong
    password so callers cannot tell which emails exist.
    """
    clean = _clean_email(email)
    user = db.query(AuthUser).filter(func.lower(AuthUser.email) == clean).first()
    reason = None
    if not user or not user.is_active or not user.password_hash:
        reason = 'unknown_or_inactive'
    elif not verify_password(password, user.password_hash):
        reason = 'bad_password'
    if reason:
        logger.warning('auth_login_denied email=%s reason=%s', _masked(clean), reason)
        raise AuthAuthenticationError('Invalid credentials')
    logger.info('auth_login_ok user_id=%s role=%s', user.id, user.role)
    return issue_session_token(user, time_provider=time_provider)


def validate_session_token(
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict | None:
    if not token:
        return None
    with _revoked_lock:
        if token in _revoked:
            return None
    claims = _verified_claims(token)
    if claims is None:
        return None

    role = str(claims.get('role') or '').strip().lower()
    if role not in _VALID_ROLES or claims.get('sub') is None:
        return None
    expires_at = int(claims.get('exp') or 0)
    if expires_at and expires_at <= int(time_provider.now().timestamp()):
        return None
    return {
        'user_id': claims['sub'],
        'email': claims.get('email') or '',
        'name': claims.get('name') or '',
        'role': role,
        'expires_at': expires_at or None,
    }


def clear_session_token(token: str | None, *, time_provider: TimeProvider = default_time_provider) -> None:
    if not token:
        return
    claims = _verified_claims(token) or {}
    now_ts = int(time_provider.now().timestamp())
    with _revoked_lock:
        for stale in [key for key, exp in _revoked.items() if exp and exp <= now_ts]:
            del _revoked[stale]
        _revoked[token] = int(claims.get('exp') or 0)
