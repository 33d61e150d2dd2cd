from datetime import datetime, timezone, timedelta

import pytest

from studyflow.mastery import update_streak
from studyflow.storage import StreakInfo

pytestmark = pytest.mark.unit

DAY = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)


def test_first_review_starts_streak():
    streak = update_streak(StreakInfo(owner_id='u1'), DAY)
    assert (streak.current, streak.longest, streak.last_review_date) == (1, 1, '2024-03-10')


def test_same_day_review_keeps_count():
    start = StreakInfo(owner_id='u1', current=3, longest=5, last_review_date='2024-03-10')
    streak = update_streak(start, DAY + timedelta(hours=5))
    assert (streak.current, streak.longest) == (3, 5)


def test_consecutive_day_extends_streak():
    start = StreakInfo(owner_id='u1', current=5, longest=5, last_review_date='2024-03-09')
    streak = update_streak(start, DAY)
    assert (streak.current, streak.longest) == (6, 6)


def test_gap_resets_streak_but_keeps_longest():
    start = StreakInfo(owner_id='u1', current=5, longest=7, last_review_date='2024-03-01')
    streak = update_streak(start, DAY)
    assert (streak.current, streak.longest, streak.last_review_date) == (1, 7, '2024-03-10')


def test_day_boundary_is_utc():
    local = datetime(2024, 3, 11, 1, 0, tzinfo=timezone(timedelta(hours=5)))
    start = StreakInfo(owner_id='u1', current=2, longest=2, last_review_date='2024-03-10')
    # 01:00 at +05:00 is still 2024-03-10 in UTC
    streak = update_streak(start, local)
    assert (streak.current, streak.last_review_date) == (2, '2024-03-10')


def test_input_streak_is_not_mutated():
    start = StreakInfo(owner_id='u1', current=1, longest=1, last_review_date='2024-03-09')
    update_streak(start, DAY)
    assert start.current == 1
