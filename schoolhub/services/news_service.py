from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from schoolhub.core.bilingual import BilingualText, resolve_text
from schoolhub.core.errors import AuthorizationError, ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from schoolhub.core.identity import IdentityProvider, Principal
from schoolhub.core.time_provider import TimeProvider, default_time_provider, to_naive_utc
from schoolhub.models import DocStatus, NewsPost, NewsPostImage, NewsPostStatus, Role
from schoolhub.services.news_validation import DEFAULT_PRIORITY, normalize_tags, validate_news_content
from schoolhub.services.news_workflow import (
    AUTHOR_DELETABLE_STATUSES,
    EDITABLE_STATUSES,
    SideEffect,
    WorkflowAction,
    allowed_actions,
    authorize_transition,
)
from schoolhub.services.observability_counters import record_observability_event


logger = logging.getLogger(__name__)

CONTENT_FIELDS = (
    'title',
    'summary',
    'body',
    'category',
    'tags',
    'featured_image',
    'images',
    'priority',
    'start_date',
    'end_date',
    'meta_description',
    'meta_keywords',
)
_BILINGUAL_FIELDS = ('title', 'summary', 'body', 'meta_description')
_SLUG_STRIP_RE = re.compile(r'[^\w\s-]', re.ASCII)
_SLUG_SPACE_RE = re.compile(r'\s+', re.ASCII)
_SLUG_DASH_RE = re.compile(r'-+')
_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def _to_base36(value: int) -> str:
    if value <= 0:
        return '0'
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


def _stamp_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def generate_slug(title: str, *, stamp_ms: int | None = None) -> str:
    """Lowercase ASCII slug of ``title`` with a base36 millisecond suffix.

    Accented letters are folded to their ASCII base; anything else outside
    ASCII (Tamil script included) is dropped.
    """
    folded = unicodedata.normalize('NFKD', title or '').encode('ascii', 'ignore').decode('ascii')
    base = folded.lower().strip()
    base = _SLUG_STRIP_RE.sub('', base)
    base = _SLUG_SPACE_RE.sub('-', base)
    base = _SLUG_DASH_RE.sub('-', base)[:80].strip('-') or 'post'
    suffix = _to_base36(stamp_ms if stamp_ms is not None else _stamp_ms(default_time_provider.now()))
    return f'{base}-{suffix}'


def _unique_slug(db: Session, title: str, *, now: datetime, exclude_post_id: int | None = None) -> str:
    stamp = _stamp_ms(now)
    while True:
        slug = generate_slug(title, stamp_ms=stamp)
        query = db.query(NewsPost.id).filter(NewsPost.slug == slug)
        if exclude_post_id:
            query = query.filter(NewsPost.id != exclude_post_id)
        if not query.first():
            return slug
        stamp += 1


def _normalize_datetime(value) -> datetime | None:
    if value in (None, ''):
        return None
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith('Z'):
            raw = raw[:-1] + '+00:00'
        try:
            value = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValidationError({'date': 'Invalid datetime format, expected ISO-8601'}) from exc
    return to_naive_utc(value)


def _normalize_image(image, *, default_order: int) -> dict:
    data = image if isinstance(image, dict) else dict(image)
    order = data.get('order')
    return {
        'url': str(data.get('url') or '').strip(),
        'thumbnail_url': str(data.get('thumbnail_url') or '').strip(),
        'alt': BilingualText.from_value(data.get('alt')).stripped(),
        'caption': BilingualText.from_value(data.get('caption')).stripped(),
        'order': default_order if order is None else order,
    }


def _content_from_post(post: NewsPost) -> dict:
    featured = next((img for img in post.images if img.kind == 'featured'), None)
    gallery = [img for img in post.images if img.kind != 'featured']
    return {
        'title': BilingualText(post.title_en or '', post.title_ta or ''),
        'summary': BilingualText(post.summary_en or '', post.summary_ta or ''),
        'body': BilingualText(post.body_en or '', post.body_ta or ''),
        'category': post.category,
        'tags': list(post.tags or []),
        'featured_image': _image_to_content(featured) if featured else None,
        'images': [_image_to_content(img) for img in gallery],
        'priority': post.priority,
        'start_date': post.start_date,
        'end_date': post.end_date,
        'meta_description': BilingualText(post.meta_description_en or '', post.meta_description_ta or ''),
        'meta_keywords': list(post.meta_keywords or []),
    }


def _image_to_content(image: NewsPostImage) -> dict:
    return {
        'url': image.url,
        'thumbnail_url': image.thumbnail_url,
        'alt': BilingualText(image.alt_en or '', image.alt_ta or ''),
        'caption': BilingualText(image.caption_en or '', image.caption_ta or ''),
        'order': image.position,
    }


def _merge_content(base: dict, patch: dict) -> dict:
    content = dict(base)
    for key in CONTENT_FIELDS:
        if key not in patch:
            continue
        value = patch[key]
        if key in _BILINGUAL_FIELDS:
            value = BilingualText.from_value(value)
            if key != 'body':
                value = value.stripped()
        elif key in ('tags', 'meta_keywords'):
            value = normalize_tags(value)
        elif key == 'featured_image':
            value = _normalize_image(value, default_order=0) if value else None
        elif key == 'images':
            value = [_normalize_image(img, default_order=index) for index, img in enumerate(value or [])]
        elif key in ('start_date', 'end_date'):
            try:
                value = _normalize_datetime(value)
            except ValidationError as exc:
                raise ValidationError({key: exc.message}) from exc
        elif key == 'priority' and value is None:
            value = DEFAULT_PRIORITY
        content[key] = value
    return content


def _empty_content() -> dict:
    return {
        'title': BilingualText(''),
        'summary': BilingualText(''),
        'body': BilingualText(''),
        'category': None,
        'tags': [],
        'featured_image': None,
        'images': [],
        'priority': DEFAULT_PRIORITY,
        'start_date': None,
        'end_date': None,
        'meta_description': BilingualText(''),
        'meta_keywords': [],
    }


def _apply_content(post: NewsPost, content: dict) -> None:
    post.title_en, post.title_ta = content['title'].en, content['title'].ta
    post.summary_en, post.summary_ta = content['summary'].en, content['summary'].ta
    post.body_en, post.body_ta = content['body'].en, content['body'].ta
    post.category = content['category']
    post.tags = list(content['tags'])
    post.priority = content['priority']
    post.start_date = content['start_date']
    post.end_date = content['end_date']
    post.meta_description_en = content['meta_description'].en
    post.meta_description_ta = content['meta_description'].ta
    post.meta_keywords = list(content['meta_keywords'])

    images: list[NewsPostImage] = []
    featured = content.get('featured_image')
    if featured:
        images.append(_build_image(featured, kind='featured', position=0))
    for image in content.get('images') or []:
        images.append(_build_image(image, kind='gallery', position=int(image['order'])))
    post.images = images


def _build_image(image: dict, *, kind: str, position: int) -> NewsPostImage:
    return NewsPostImage(
        kind=kind,
        url=image['url'],
        thumbnail_url=image.get('thumbnail_url') or '',
        alt_en=image['alt'].en,
        alt_ta=image['alt'].ta,
        caption_en=image['caption'].en,
        caption_ta=image['caption'].ta,
        position=position,
    )


def _serialize_image(image: NewsPostImage) -> dict:
    return {
        'id': image.id,
        'url': image.url,
        'thumbnail_url': image.thumbnail_url or None,
        'alt': {'en': image.alt_en, 'ta': image.alt_ta},
        'caption': {'en': image.caption_en, 'ta': image.caption_ta} if (image.caption_en or image.caption_ta) else None,
        'order': image.position,
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_news_post(post: NewsPost) -> dict:
    featured = next((img for img in post.images if img.kind == 'featured'), None)
    return {
        'id': post.id,
        'slug': post.slug,
        'title': {'en': post.title_en, 'ta': post.title_ta},
        'summary': {'en': post.summary_en, 'ta': post.summary_ta},
        'body': {'en': post.body_en, 'ta': post.body_ta},
        'category': post.category,
        'tags': list(post.tags or []),
        'featured_image': _serialize_image(featured) if featured else None,
        'images': [_serialize_image(img) for img in post.images if img.kind != 'featured'],
        'status': post.status,
        'allowed_actions': [action.value for action in allowed_actions(NewsPostStatus(post.status))],
        'priority': post.priority,
        'is_pinned': bool(post.is_pinned),
        'views': int(post.views or 0),
        'start_date': _iso(post.start_date),
        'end_date': _iso(post.end_date),
        'meta_description': {'en': post.meta_description_en, 'ta': post.meta_description_ta},
        'meta_keywords': list(post.meta_keywords or []),
        'author_id': post.author_id,
        'author_name': post.author_name,
        'author_role': post.author_role,
        'submitted_at': _iso(post.submitted_at),
        'reviewed_by': post.reviewed_by,
        'reviewed_by_name': post.reviewed_by_name,
        'reviewed_at': _iso(post.reviewed_at),
        'rejection_reason': post.rejection_reason,
        'published_at': _iso(post.published_at),
        'published_by': post.published_by,
        'published_by_name': post.published_by_name,
        'unpublished_at': _iso(post.unpublished_at),
        'unpublished_by': post.unpublished_by,
        'created_at': _iso(post.created_at),
        'updated_at': _iso(post.updated_at),
    }


def serialize_public_post(post: NewsPost, *, lang: str | None = None) -> dict:
    featured = next((img for img in post.images if img.kind == 'featured'), None)
    payload = {
        'id': post.id,
        'slug': post.slug,
        'title': {'en': post.title_en, 'ta': post.title_ta},
        'summary': {'en': post.summary_en, 'ta': post.summary_ta},
        'body': {'en': post.body_en, 'ta': post.body_ta},
        'category': post.category,
        'tags': list(post.tags or []),
        'featured_image': _serialize_image(featured) if featured else None,
        'images': [_serialize_image(img) for img in post.images if img.kind != 'featured'],
        'author_name': post.author_name,
        'published_at': _iso(post.published_at or post.created_at),
        'priority': post.priority,
        'is_pinned': bool(post.is_pinned),
        'views': int(post.views or 0),
        'meta_description': {'en': post.meta_description_en, 'ta': post.meta_description_ta},
        'meta_keywords': list(post.meta_keywords or []),
    }
    if lang:
        payload['display'] = {
            'title': resolve_text(payload['title'], lang),
            'summary': resolve_text(payload['summary'], lang),
            'body': resolve_text(payload['body'], lang),
        }
    return payload


class NewsWorkflowService:
    """Authoring, moderation and publication of bilingual news posts.

    Each call re-reads the post, authorizes the acting principal and writes
    through the mapper's version counter, so a post changed by someone else
    between the read and the write is reported as a ``ConflictError``.
    """

    def __init__(
        self,
        db: Session,
        identity: IdentityProvider,
        *,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self.db = db
        self.identity = identity
        self.time_provider = time_provider

    def _principal(self) -> Principal:
        return self.identity.resolve()

    def _load(self, post_id: int) -> NewsPost:
        post = (
            self.db.query(NewsPost)
            .options(selectinload(NewsPost.images))
            .filter(NewsPost.id == int(post_id), NewsPost.doc_status == DocStatus.ACTIVE.value)
            .populate_existing()
            .first()
        )
        if not post:
            raise NotFoundError('News post not found', code='news/not-found')
        return post

    def _commit(self, post: NewsPost, *, event: str) -> NewsPost:
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.db.rollback()
            record_observability_event('news_transition_conflict')
            logger.warning('news_post_write_conflict post_id=%s event=%s', post.id, event)
            raise ConflictError('News post was changed by another request; reload and retry', code='news/conflict') from exc
        self.db.refresh(post)
        return post

    def _require_reader(self, principal: Principal, post: NewsPost) -> None:
        if principal.is_moderator:
            return
        if principal.role == Role.TEACHER.value and int(post.author_id) == int(principal.id):
            return
        raise AuthorizationError('Not allowed to view this post')

    def get(self, id_or_slug: int | str) -> NewsPost:
        principal = self._principal()
        if isinstance(id_or_slug, int) or str(id_or_slug).isdigit():
            post = self._load(int(id_or_slug))
        else:
            post = (
                self.db.query(NewsPost)
                .options(selectinload(NewsPost.images))
                .filter(NewsPost.slug == str(id_or_slug), NewsPost.doc_status == DocStatus.ACTIVE.value)
                .first()
            )
            if not post:
                raise NotFoundError('News post not found', code='news/not-found')
        self._require_reader(principal, post)
        return post

    def list(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
        author_id: int | None = None,
        search: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[NewsPost], int]:
        principal = self._principal()
        if not principal.can_author:
            raise AuthorizationError('Not allowed to list news posts')

        query = self.db.query(NewsPost).filter(NewsPost.doc_status == DocStatus.ACTIVE.value)
        if not principal.is_moderator:
            query = query.filter(NewsPost.author_id == principal.id)
        elif author_id:
            query = query.filter(NewsPost.author_id == int(author_id))
        if status and status != 'all':
            try:
                query = query.filter(NewsPost.status == NewsPostStatus(status).value)
            except ValueError as exc:
                raise ValidationError({'status': f'Unknown status: {status}'}) from exc
        if category and category != 'all':
            query = query.filter(NewsPost.category == category)
        if search:
            needle = f"%{search.strip().lower()}%"
            query = query.filter(or_(func.lower(NewsPost.title_en).like(needle), func.lower(NewsPost.title_ta).like(needle)))

        total = query.count()
        rows = (
            query.options(selectinload(NewsPost.images))
            .order_by(NewsPost.created_at.desc(), NewsPost.id.desc())
            .offset(max(0, int(offset)))
            .limit(max(1, min(int(limit), 100)))
            .all()
        )
        return rows, total

    def pending_review_count(self) -> int:
        principal = self._principal()
        if not principal.is_moderator:
            raise AuthorizationError('Moderator role required')
        return (
            self.db.query(func.count(NewsPost.id))
            .filter(
                NewsPost.status == NewsPostStatus.PENDING_REVIEW.value,
                NewsPost.doc_status == DocStatus.ACTIVE.value,
            )
            .scalar()
            or 0
        )

    def create(self, data: dict) -> NewsPost:
        principal = self._principal()
        if not principal.can_author:
            raise AuthorizationError(f'Role {principal.role!r} may not author news posts')

        content = _merge_content(_empty_content(), data)
        validate_news_content(content)

        now = self.time_provider.utcnow()
        post = NewsPost(
            slug=_unique_slug(self.db, content['title'].en, now=self.time_provider.now()),
            status=NewsPostStatus.DRAFT.value,
            doc_status=DocStatus.ACTIVE.value,
            author_id=principal.id,
            author_name=principal.name,
            author_role=principal.role,
            is_pinned=False,
            views=0,
            created_at=now,
            updated_at=now,
        )
        _apply_content(post, content)
        self.db.add(post)
        self._commit(post, event='create')
        logger.info('news_post_created post_id=%s author_id=%s role=%s', post.id, principal.id, principal.role)
        return post

    def update(self, post_id: int, patch: dict) -> NewsPost:
        principal = self._principal()
        post = self._load(post_id)
        if int(post.author_id) != int(principal.id):
            raise AuthorizationError('Only the author may edit this post')
        if NewsPostStatus(post.status) not in EDITABLE_STATUSES:
            raise InvalidTransitionError(f'Cannot edit post with status: {post.status}')

        base = _content_from_post(post)
        content = _merge_content(base, patch)
        validate_news_content(content)

        if content['title'].en != base['title'].en:
            post.slug = _unique_slug(self.db, content['title'].en, now=self.time_provider.now(), exclude_post_id=post.id)
        _apply_content(post, content)
        post.updated_at = self.time_provider.utcnow()
        self._commit(post, event='update')
        logger.info('news_post_updated post_id=%s author_id=%s', post.id, principal.id)
        return post

    def delete(self, post_id: int) -> None:
        principal = self._principal()
        post = self._load(post_id)
        if not principal.is_moderator:
            if int(post.author_id) != int(principal.id):
                raise AuthorizationError('Not allowed to delete this post')
            if NewsPostStatus(post.status) not in AUTHOR_DELETABLE_STATUSES:
                raise InvalidTransitionError(f'Cannot delete post with status: {post.status}')
        post.doc_status = DocStatus.DELETED.value
        post.updated_at = self.time_provider.utcnow()
        self._commit(post, event='delete')
        logger.info('news_post_deleted post_id=%s actor_id=%s status=%s', post.id, principal.id, post.status)

    def set_pinned(self, post_id: int, is_pinned: bool) -> NewsPost:
        principal = self._principal()
        if not principal.is_moderator:
            raise AuthorizationError('Moderator role required to pin posts')
        post = self._load(post_id)
        post.is_pinned = bool(is_pinned)
        post.updated_at = self.time_provider.utcnow()
        return self._commit(post, event='pin')

    def transition(self, post_id: int, action: WorkflowAction | str, *, reason: str | None = None) -> NewsPost:
        principal = self._principal()
        post = self._load(post_id)
        source = post.status
        try:
            transition = authorize_transition(
                status=source,
                action=action,
                principal=principal,
                author_id=post.author_id,
                author_role=post.author_role,
            )
        except (InvalidTransitionError, AuthorizationError) as exc:
            record_observability_event('news_transition_denied')
            logger.warning(
                'news_post_transition_denied post_id=%s action=%s status=%s actor_id=%s role=%s reason=%s',
                post.id,
                WorkflowAction(action).value,
                source,
                principal.id,
                principal.role,
                exc.code,
            )
            raise

        clean_reason = (reason or '').strip()
        if SideEffect.SET_REJECTION_REASON in transition.effects and not clean_reason:
            raise ValidationError({'rejection_reason': 'Rejection reason is required'})

        now = self.time_provider.utcnow()
        for effect in transition.effects:
            if effect is SideEffect.SET_SUBMITTED_AT:
                post.submitted_at = now
            elif effect is SideEffect.CLEAR_REVIEW:
                post.rejection_reason = None
                post.reviewed_by = None
                post.reviewed_by_name = None
                post.reviewed_at = None
            elif effect is SideEffect.RECORD_REVIEW:
                post.reviewed_by = principal.id
                post.reviewed_by_name = principal.name
                post.reviewed_at = now
            elif effect is SideEffect.SET_REJECTION_REASON:
                post.rejection_reason = clean_reason
            elif effect is SideEffect.SET_PUBLISHED_AT:
                if post.published_at is None:
                    post.published_at = now
                post.published_by = principal.id
                post.published_by_name = principal.name
            elif effect is SideEffect.RECORD_UNPUBLISH:
                post.unpublished_at = now
                post.unpublished_by = principal.id
        post.status = transition.target.value
        post.updated_at = now
        self._commit(post, event=transition.action.value)

        record_observability_event('news_transition_applied')
        logger.info(
            'news_post_transition post_id=%s action=%s from=%s to=%s actor_id=%s',
            post.id,
            transition.action.value,
            source,
            post.status,
            principal.id,
        )
        return post

    def submit(self, post_id: int) -> NewsPost:
        return self.transition(post_id, WorkflowAction.SUBMIT)

    def approve(self, post_id: int) -> NewsPost:
        return self.transition(post_id, WorkflowAction.APPROVE)

    def reject(self, post_id: int, reason: str) -> NewsPost:
        return self.transition(post_id, WorkflowAction.REJECT, reason=reason)

    def publish(self, post_id: int) -> NewsPost:
        return self.transition(post_id, WorkflowAction.PUBLISH)

    def unpublish(self, post_id: int) -> NewsPost:
        return self.transition(post_id, WorkflowAction.UNPUBLISH)


def _public_query(db: Session, *, now: datetime):
    return db.query(NewsPost).filter(
        NewsPost.status == NewsPostStatus.PUBLISHED.value,
        NewsPost.doc_status == DocStatus.ACTIVE.value,
        or_(NewsPost.start_date.is_(None), NewsPost.start_date <= now),
        or_(NewsPost.end_date.is_(None), NewsPost.end_date >= now),
    )


def list_published_posts(
    db: Session,
    *,
    category: str | None = None,
    limit: int = 20,
    offset: int = 0,
    time_provider: TimeProvider = default_time_provider,
) -> tuple[list[NewsPost], int]:
    query = _public_query(db, now=time_provider.utcnow())
    if category and category != 'all':
        query = query.filter(NewsPost.category == category)
    total = query.count()
    rows = (
        query.options(selectinload(NewsPost.images))
        .order_by(
            NewsPost.is_pinned.desc(),
            NewsPost.priority.desc(),
            NewsPost.published_at.desc(),
            NewsPost.id.desc(),
        )
        .offset(max(0, int(offset)))
        .limit(max(1, min(int(limit), 100)))
        .all()
    )
    return rows, total


def get_published_post(db: Session, slug: str, *, time_provider: TimeProvider = default_time_provider) -> NewsPost:
    post = (
        _public_query(db, now=time_provider.utcnow())
        .options(selectinload(NewsPost.images))
        .filter(NewsPost.slug == slug)
        .first()
    )
    if not post:
        raise NotFoundError('News post not found', code='news/not-found')
    return post


def record_view(db: Session, slug: str) -> bool:
    # Bulk UPDATE skips the version counter so views never conflict with edits.
    updated = (
        db.query(NewsPost)
        .filter(
            NewsPost.slug == slug,
            NewsPost.status == NewsPostStatus.PUBLISHED.value,
            NewsPost.doc_status == DocStatus.ACTIVE.value,
        )
        .update({NewsPost.views: NewsPost.views + 1}, synchronize_session=False)
    )
    db.commit()
    return bool(updated)
