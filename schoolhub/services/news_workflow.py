"""Moderation lifecycle of news posts as one declarative table.

Every status change goes through :func:`authorize_transition`; call sites
never branch on status themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from schoolhub.core.errors import AuthorizationError, InvalidTransitionError
from schoolhub.core.identity import Principal
from schoolhub.models import AUTHOR_ROLES, MODERATOR_ROLES, NewsPostStatus


class WorkflowAction(str, Enum):
    SUBMIT = 'submit'
    APPROVE = 'approve'
    REJECT = 'reject'
    PUBLISH = 'publish'
    UNPUBLISH = 'unpublish'


class SideEffect(str, Enum):
    SET_SUBMITTED_AT = 'set_submitted_at'
    CLEAR_REVIEW = 'clear_review'
    RECORD_REVIEW = 'record_review'
    SET_REJECTION_REASON = 'set_rejection_reason'
    SET_PUBLISHED_AT = 'set_published_at'
    RECORD_UNPUBLISH = 'record_unpublish'


@dataclass(frozen=True)
class Transition:
    source: NewsPostStatus
    action: WorkflowAction
    target: NewsPostStatus
    roles: frozenset[str]
    author_only: bool = False
    requires_moderator_author: bool = False
    effects: tuple[SideEffect, ...] = field(default_factory=tuple)


TRANSITIONS: dict[tuple[NewsPostStatus, WorkflowAction], Transition] = {
    (t.source, t.action): t
    for t in (
        Transition(NewsPostStatus.DRAFT, WorkflowAction.SUBMIT, NewsPostStatus.PENDING_REVIEW, AUTHOR_ROLES, author_only=True, effects=(SideEffect.SET_SUBMITTED_AT,)),
        Transition(NewsPostStatus.DRAFT, WorkflowAction.PUBLISH, NewsPostStatus.PUBLISHED, MODERATOR_ROLES, requires_moderator_author=True, effects=(SideEffect.SET_PUBLISHED_AT,)),
        Transition(NewsPostStatus.PENDING_REVIEW, WorkflowAction.APPROVE, NewsPostStatus.APPROVED, MODERATOR_ROLES, effects=(SideEffect.RECORD_REVIEW,)),
        Transition(NewsPostStatus.PENDING_REVIEW, WorkflowAction.REJECT, NewsPostStatus.REJECTED, MODERATOR_ROLES, effects=(SideEffect.RECORD_REVIEW, SideEffect.SET_REJECTION_REASON)),
        Transition(NewsPostStatus.REJECTED, WorkflowAction.SUBMIT, NewsPostStatus.PENDING_REVIEW, AUTHOR_ROLES, author_only=True, effects=(SideEffect.CLEAR_REVIEW, SideEffect.SET_SUBMITTED_AT)),
        Transition(NewsPostStatus.APPROVED, WorkflowAction.PUBLISH, NewsPostStatus.PUBLISHED, MODERATOR_ROLES, effects=(SideEffect.SET_PUBLISHED_AT,)),
        Transition(NewsPostStatus.PUBLISHED, WorkflowAction.UNPUBLISH, NewsPostStatus.UNPUBLISHED, MODERATOR_ROLES, effects=(SideEffect.RECORD_UNPUBLISH,)),
        Transition(NewsPostStatus.UNPUBLISHED, WorkflowAction.PUBLISH, NewsPostStatus.PUBLISHED, MODERATOR_ROLES, effects=(SideEffect.SET_PUBLISHED_AT,)),
    )
}

EDITABLE_STATUSES = frozenset({NewsPostStatus.DRAFT, NewsPostStatus.REJECTED})
AUTHOR_DELETABLE_STATUSES = frozenset({NewsPostStatus.DRAFT})


def allowed_actions(status: NewsPostStatus) -> list[WorkflowAction]:
    return [action for (source, action) in TRANSITIONS if source == status]


def authorize_transition(
    *,
    status: NewsPostStatus | str,
    action: WorkflowAction | str,
    principal: Principal,
    author_id: int,
    author_role: str,
) -> Transition:
    """Returns the edge for ``(status, action)`` once the actor is cleared.

    Raises ``InvalidTransitionError`` when the edge does not exist and
    ``AuthorizationError`` when the actor may not take it.
    """
    current = NewsPostStatus(status)
    requested = WorkflowAction(action)
    transition = TRANSITIONS.get((current, requested))
    if transition is None or (transition.requires_moderator_author and author_role not in MODERATOR_ROLES):
        raise InvalidTransitionError(f'Cannot {requested.value} a post with status: {current.value}')
    if principal.role not in transition.roles:
        raise AuthorizationError(f'Role {principal.role!r} may not {requested.value} news posts')
    if transition.author_only and int(principal.id) != int(author_id):
        raise AuthorizationError(f'Only the author may {requested.value} this post')
    return transition
