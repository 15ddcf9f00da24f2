from __future__ import annotations

import html
import re

from schoolhub.core.bilingual import BilingualText
from schoolhub.core.errors import ValidationError
from schoolhub.models import NewsPostCategory


MAX_TITLE_LENGTH = 200
MAX_SUMMARY_LENGTH = 300
MAX_BODY_LENGTH = 50000
MAX_IMAGES = 10
MAX_TAGS = 10
MAX_TAG_LENGTH = 50
MIN_PRIORITY = 1
MAX_PRIORITY = 100
DEFAULT_PRIORITY = 50
MAX_META_DESCRIPTION_LENGTH = 160
MAX_META_KEYWORDS = 10
MAX_URL_LENGTH = 1000

_TAG_RE = re.compile(r'<[^>]*>')
_WS_RE = re.compile(r'\s+')
_CATEGORIES = {category.value for category in NewsPostCategory}


def rich_text_to_plain(value: str | None) -> str:
    """Strips markup so editor output like ``<p><br></p>`` reads as empty."""
    text = _TAG_RE.sub(' ', value or '')
    text = html.unescape(text).replace('\xa0', ' ')
    return _WS_RE.sub(' ', text).strip()


def is_rich_text_empty(value: str | None) -> bool:
    return not rich_text_to_plain(value)


def normalize_tags(tags) -> list[str]:
    cleaned = []
    for tag in tags or []:
        value = str(tag or '').strip()
        if value:
            cleaned.append(value)
    return cleaned


def _check_bilingual(
    errors: dict[str, str],
    field: str,
    label: str,
    value: BilingualText,
    *,
    max_length: int,
    required: bool,
) -> None:
    en = (value.en or '').strip()
    ta = (value.ta or '').strip()
    if required and not en:
        errors[f'{field}.en'] = f'English {label} is required'
    elif len(en) > max_length:
        errors[f'{field}.en'] = f'English {label} must be at most {max_length} characters'
    if len(ta) > max_length:
        errors[f'{field}.ta'] = f'Tamil {label} must be at most {max_length} characters'


def _check_image(errors: dict[str, str], field: str, image: dict) -> None:
    url = str(image.get('url') or '').strip()
    if not url:
        errors[f'{field}.url'] = 'Image URL is required'
    elif len(url) > MAX_URL_LENGTH:
        errors[f'{field}.url'] = f'Image URL must be at most {MAX_URL_LENGTH} characters'
    order = image.get('order')
    if order is not None and (not isinstance(order, int) or order < 0):
        errors[f'{field}.order'] = 'Image order must be a non-negative integer'


def validate_news_content(content: dict) -> None:
    """Checks a complete (create or merged edit) news post payload.

    Raises ``ValidationError`` carrying one message per offending field.
    """
    errors: dict[str, str] = {}

    _check_bilingual(errors, 'title', 'title', BilingualText.from_value(content.get('title')), max_length=MAX_TITLE_LENGTH, required=True)
    _check_bilingual(errors, 'summary', 'summary', BilingualText.from_value(content.get('summary')), max_length=MAX_SUMMARY_LENGTH, required=True)

    body = BilingualText.from_value(content.get('body'))
    if is_rich_text_empty(body.en):
        errors['body.en'] = 'English body is required'
    elif len(body.en) > MAX_BODY_LENGTH:
        errors['body.en'] = f'English body must be at most {MAX_BODY_LENGTH} characters'
    if len(body.ta or '') > MAX_BODY_LENGTH:
        errors['body.ta'] = f'Tamil body must be at most {MAX_BODY_LENGTH} characters'

    category = content.get('category')
    if category not in _CATEGORIES:
        errors['category'] = f"Category must be one of: {', '.join(sorted(_CATEGORIES))}"

    tags = normalize_tags(content.get('tags'))
    if len(tags) > MAX_TAGS:
        errors['tags'] = f'At most {MAX_TAGS} tags are allowed'
    for index, tag in enumerate(tags):
        if len(tag) > MAX_TAG_LENGTH:
            errors[f'tags[{index}]'] = f'Tags must be at most {MAX_TAG_LENGTH} characters'

    featured = content.get('featured_image')
    if featured:
        _check_image(errors, 'featured_image', featured)
    images = content.get('images') or []
    if len(images) > MAX_IMAGES:
        errors['images'] = f'At most {MAX_IMAGES} gallery images are allowed'
    for index, image in enumerate(images):
        _check_image(errors, f'images[{index}]', image)

    priority = content.get('priority', DEFAULT_PRIORITY)
    if not isinstance(priority, int) or isinstance(priority, bool) or not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        errors['priority'] = f'Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}'

    start_date = content.get('start_date')
    end_date = content.get('end_date')
    if start_date and end_date and end_date < start_date:
        errors['end_date'] = 'End date must not be before start date'

    _check_bilingual(
        errors,
        'meta_description',
        'meta description',
        BilingualText.from_value(content.get('meta_description')),
        max_length=MAX_META_DESCRIPTION_LENGTH,
        required=False,
    )
    if len(normalize_tags(content.get('meta_keywords'))) > MAX_META_KEYWORDS:
        errors['meta_keywords'] = f'At most {MAX_META_KEYWORDS} meta keywords are allowed'

    if errors:
        raise ValidationError(errors)
