import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from schoolhub.config import settings
from schoolhub.core.bilingual import SUPPORTED_LANGUAGES
from schoolhub.core.errors import NotFoundError
from schoolhub.core.router_guard import domain_http_error
from schoolhub.db import get_db, get_session_factory
from schoolhub.route_logging import EndpointNameRoute
from schoolhub.services.news_service import get_published_post, list_published_posts, record_view, serialize_public_post
from schoolhub.services.observability_counters import record_observability_event


router = APIRouter(prefix='/api/public/news-posts', tags=['Public News'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)


def _lang(value: str | None) -> str | None:
    if value is None:
        return None
    clean = value.strip().lower()
    if clean not in SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=422, detail={'code': 'validation/error', 'message': f'Unsupported language: {value}'})
    return clean


def record_view_in_background(session_factory, slug: str) -> None:
    db = session_factory()
    try:
        if record_view(db, slug):
            record_observability_event('news_view_recorded')
    except Exception:
        db.rollback()
        record_observability_event('news_view_failed')
        logger.exception('news_view_record_failed slug=%s', slug)
    finally:
        db.close()


@router.get('')
def list_public_news(
    category: str | None = Query(default=None),
    lang: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    page_size = limit or settings.public_news_page_size
    language = _lang(lang)
    rows, total = list_published_posts(db, category=category, limit=page_size, offset=offset)
    return {
        'items': [serialize_public_post(row, lang=language) for row in rows],
        'total': total,
        'limit': page_size,
        'offset': offset,
    }


@router.get('/{slug}')
def get_public_news(slug: str, lang: str | None = Query(default=None), db: Session = Depends(get_db)):
    language = _lang(lang)
    try:
        row = get_published_post(db, slug)
    except NotFoundError as exc:
        raise domain_http_error(exc) from exc
    return serialize_public_post(row, lang=language)


@router.post('/{slug}/view', status_code=202)
def record_public_news_view(
    slug: str,
    background_tasks: BackgroundTasks,
    session_factory=Depends(get_session_factory),
):
    background_tasks.add_task(record_view_in_background, session_factory, slug)
    return JSONResponse(status_code=202, content={'accepted': True})
