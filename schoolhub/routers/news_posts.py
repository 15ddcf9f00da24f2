from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from schoolhub.core.errors import DomainError
from schoolhub.core.identity import IdentityProvider
from schoolhub.core.router_guard import domain_http_error, require_identity
from schoolhub.db import get_db
from schoolhub.route_logging import EndpointNameRoute
from schoolhub.schemas import NewsPinRequest, NewsPostCreateRequest, NewsPostUpdateRequest, NewsRejectRequest
from schoolhub.services.news_service import NewsWorkflowService, serialize_news_post
from schoolhub.services.news_workflow import WorkflowAction


router = APIRouter(prefix='/api/news-posts', tags=['News'], route_class=EndpointNameRoute)


def _service(db: Session, identity: IdentityProvider) -> NewsWorkflowService:
    return NewsWorkflowService(db, identity)


@router.get('')
def list_news_posts(
    status: str | None = Query(default=None),
    category: str | None = Query(default=None),
    author_id: int | None = Query(default=None),
    search: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        rows, total = _service(db, identity).list(
            status=status,
            category=category,
            author_id=author_id,
            search=search,
            limit=limit,
            offset=offset,
        )
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return {'items': [serialize_news_post(row) for row in rows], 'total': total, 'limit': limit, 'offset': offset}


@router.get('/pending-count')
def pending_review_count(db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        return {'count': _service(db, identity).pending_review_count()}
    except DomainError as exc:
        raise domain_http_error(exc) from exc


@router.post('', status_code=201)
def create_news_post(
    payload: NewsPostCreateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).create(payload.model_dump())
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_news_post(row)


@router.get('/{id_or_slug}')
def get_news_post(id_or_slug: str, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).get(id_or_slug)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_news_post(row)


@router.patch('/{post_id}')
def update_news_post(
    post_id: int,
    payload: NewsPostUpdateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).update(post_id, payload.model_dump(exclude_unset=True))
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_news_post(row)


@router.delete('/{post_id}', status_code=204)
def delete_news_post(post_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        _service(db, identity).delete(post_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return Response(status_code=204)


def _run_transition(db: Session, identity: IdentityProvider, post_id: int, action: WorkflowAction, reason: str | None = None) -> dict:
    try:
        row = _service(db, identity).transition(post_id, action, reason=reason)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_news_post(row)


@router.post('/{post_id}/submit')
def submit_news_post(post_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    return _run_transition(db, identity, post_id, WorkflowAction.SUBMIT)


@router.post('/{post_id}/approve')
def approve_news_post(post_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    return _run_transition(db, identity, post_id, WorkflowAction.APPROVE)


@router.post('/{post_id}/reject')
def reject_news_post(
    post_id: int,
    payload: NewsRejectRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    return _run_transition(db, identity, post_id, WorkflowAction.REJECT, reason=payload.reason)


@router.post('/{post_id}/publish')
def publish_news_post(post_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    return _run_transition(db, identity, post_id, WorkflowAction.PUBLISH)


@router.post('/{post_id}/unpublish')
def unpublish_news_post(post_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    return _run_transition(db, identity, post_id, WorkflowAction.UNPUBLISH)


@router.post('/{post_id}/pin')
def pin_news_post(
    post_id: int,
    payload: NewsPinRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).set_pinned(post_id, payload.is_pinned)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_news_post(row)
