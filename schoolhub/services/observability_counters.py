from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime, timedelta
import threading

from schoolhub.core.time_provider import default_time_provider


_LOCK = threading.Lock()
_EVENTS: dict[str, deque[datetime]] = defaultdict(deque)
_RETENTION = timedelta(hours=25)

# Events reported by the health endpoint.
TRACKED_EVENTS = (
    'news_transition_applied',
    'news_transition_denied',
    'news_transition_conflict',
    'news_view_recorded',
    'news_view_failed',
    'class_teacher_assigned',
    'class_teacher_conflict',
    'student_enrolled',
    'student_enrollment_rejected',
)


def record_observability_event(name: str, *, at: datetime | None = None) -> None:
    event = str(name or '').strip().lower()
    if not event:
        return
    now = at or default_time_provider.utcnow()
    with _LOCK:
        bucket = _EVENTS[event]
        bucket.append(now)
        cutoff = now - _RETENTION
        while bucket and bucket[0] < cutoff:
            bucket.popleft()


def count_observability_events(name: str, *, window_hours: int = 24, now: datetime | None = None) -> int:
    event = str(name or '').strip().lower()
    if not event:
        return 0
    current = now or default_time_provider.utcnow()
    cutoff = current - timedelta(hours=max(1, int(window_hours or 24)))
    with _LOCK:
        bucket = _EVENTS.get(event) or deque()
        return sum(1 for at in bucket if at >= cutoff)


def observability_summary(*, window_hours: int = 24) -> dict[str, int]:
    return {name: count_observability_events(name, window_hours=window_hours) for name in TRACKED_EVENTS}


def clear_observability_events() -> None:
    with _LOCK:
        _EVENTS.clear()
