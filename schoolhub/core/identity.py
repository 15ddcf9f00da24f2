from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from schoolhub.core.errors import AuthorizationError
from schoolhub.models import AUTHOR_ROLES, MODERATOR_ROLES


@dataclass(frozen=True)
class Principal:
    id: int
    role: str
    name: str = ''
    email: str = ''

    @property
    def is_moderator(self) -> bool:
        return self.role in MODERATOR_ROLES

    @property
    def can_author(self) -> bool:
        return self.role in AUTHOR_ROLES


class IdentityProvider:
    """Resolves the principal acting on the current call."""

    def resolve(self) -> Principal:
        raise NotImplementedError


class StaticIdentity(IdentityProvider):
    def __init__(self, principal: Principal) -> None:
        self._principal = principal

    def resolve(self) -> Principal:
        return self._principal


class SessionIdentity(IdentityProvider):
    """Resolves a principal from a signed session token.

    ``validator`` maps a raw token to the session payload (or ``None``); it is
    injected so routers can hand in whatever validator they were configured
    with.
    """

    def __init__(self, token: str | None, validator: Callable[[str | None], dict | None]) -> None:
        self._token = token
        self._validator = validator
        self._principal: Principal | None = None

    def resolve(self) -> Principal:
        if self._principal is None:
            session = self._validator(self._token)
            if not session:
                raise AuthorizationError('Authentication required', code='auth/unauthenticated')
            user_id = int(session.get('user_id') or 0)
            role = str(session.get('role') or '').strip().lower()
            if user_id <= 0 or not role:
                raise AuthorizationError('Authentication required', code='auth/unauthenticated')
            self._principal = Principal(
                id=user_id,
                role=role,
                name=str(session.get('name') or ''),
                email=str(session.get('email') or ''),
            )
        return self._principal


def require_roles(principal: Principal, allowed_roles, *, action: str = 'perform this action') -> None:
    normalized = {str(getattr(role, 'value', role)).strip().lower() for role in allowed_roles}
    if principal.role not in normalized:
        raise AuthorizationError(f'Role {principal.role!r} is not allowed to {action}')


def require_moderator(principal: Principal, *, action: str = 'perform this action') -> None:
    require_roles(principal, MODERATOR_ROLES, action=action)
