from datetime import date, datetime, timedelta, timezone
from typing import Optional

from studyflow.storage.models import StreakInfo
from .engine import as_utc


def _parse_day(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def update_streak(streak: StreakInfo, reviewed_at: Optional[datetime] = None) -> StreakInfo:
    """Return the streak after a review on the UTC day of `reviewed_at`."""
    today = (as_utc(reviewed_at) or datetime.now(timezone.utc)).date()
    last = _parse_day(streak.last_review_date)

    current = max(0, streak.current)
    if last == today:
        current = max(1, current)
    elif last is not None and last + timedelta(days=1) == today:
        current += 1
    else:
        current = 1

    return streak.model_copy(update={
        'current': current,
        'longest': max(streak.longest, current),
        'last_review_date': today.isoformat(),
    })
