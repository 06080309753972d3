"""Spaced-repetition schedule for stored weak knowledge points.

The interval ladder is cyclic: once a point has been reviewed as many times as
there are rungs, the next review starts over at the shortest interval.
Timestamps are compared as naive local datetimes, matching the
``YYYY-MM-DD HH:MM:SS`` strings the profile service stores.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .review_models import WeakKnowledgePoint

REVIEW_INTERVAL_DAYS = (0.5, 1, 2, 4, 7, 15, 30)
PROFILE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class ReviewSchedule:
    next_due_at: datetime
    is_due: bool


def format_profile_time(value: datetime) -> str:
    return value.strftime(PROFILE_TIME_FORMAT)


def parse_profile_time(value: Optional[str]) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def interval_days_for(review_count: int) -> float:
    position = max(0, int(review_count or 0)) % len(REVIEW_INTERVAL_DAYS)
    return REVIEW_INTERVAL_DAYS[position]


def next_review(point: WeakKnowledgePoint, now: Optional[datetime] = None) -> ReviewSchedule:
    current = now or datetime.now()
    base = parse_profile_time(point.last_review_time) or parse_profile_time(point.first_weak_time) or current
    next_due_at = base + timedelta(days=interval_days_for(point.review_count))
    return ReviewSchedule(next_due_at=next_due_at, is_due=current >= next_due_at)


def annotate_schedule(points: Iterable[WeakKnowledgePoint], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    current = now or datetime.now()
    out: List[Dict[str, Any]] = []
    for point in points:
        schedule = next_review(point, now=current)
        item = point.to_dict()
        item["next_review_time"] = format_profile_time(schedule.next_due_at)
        item["review_due"] = schedule.is_due
        out.append(item)
    return out
