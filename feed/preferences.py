"""
Preference signals derived from a subject's view history

Pure functions: callers fetch the views and facts, these only compute.
"""
import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import numpy as np

from feed.config import (
    AFFINITY_BASE,
    AFFINITY_SPAN,
    DEFAULT_CATEGORY_WEIGHT,
    DEFAULT_COMPLETION_RATE,
    DEFAULT_PREFERRED_HOUR,
    DEFAULT_VIEW_DURATION,
    ENGAGEMENT_DECAY_RATE,
    RESURFACE_DECAY_RATE,
    TIME_RELEVANCE_WIDTH_HOURS,
    UNSEEN_DECAY_RATE,
)
from shared.models import CategoryEngagement, Fact, PreferenceSignal, ViewEvent

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def days_between(earlier: datetime, later: datetime) -> float:
    return max((later - earlier).total_seconds() / SECONDS_PER_DAY, 0.0)


def estimate_viewing_patterns(views: List[ViewEvent]) -> PreferenceSignal:
    """
    Estimate when and how a subject consumes content

    Args:
        views: Recent view events (any order)

    Returns:
        PreferenceSignal. The preferred hour is the UTC hour with the most
        views; ties go to the earliest hour. Cold start returns the defaults.
    """
    if not views:
        return PreferenceSignal(DEFAULT_PREFERRED_HOUR, DEFAULT_VIEW_DURATION, DEFAULT_COMPLETION_RATE)

    hours = np.array([view.viewed_at.hour for view in views])
    hour_counts = np.bincount(hours, minlength=24)
    # argmax returns the first maximum, i.e. the earliest tied hour
    preferred_hour = int(np.argmax(hour_counts))

    durations = [v.view_duration for v in views if v.view_duration is not None]
    completions = [v.completion_rate for v in views if v.completion_rate is not None]

    return PreferenceSignal(
        preferred_time_of_day=preferred_hour,
        average_view_duration=float(np.mean(durations)) if durations else DEFAULT_VIEW_DURATION,
        completion_rate=float(np.mean(completions)) if completions else DEFAULT_COMPLETION_RATE,
    )


def estimate_category_affinity(views: Iterable[ViewEvent], facts: Iterable[Fact]) -> Dict[str, float]:
    """
    Weight each category by how often the subject viewed it

    Args:
        views: Recent view events
        facts: Facts referenced by those views (missing ones are skipped)

    Returns:
        Mapping category id -> weight in [0.5, 1.5]; the most viewed
        category scores 1.5. Categories never viewed are absent.
    """
    category_of = {fact.id: fact.category_id for fact in facts}

    category_counts: Dict[str, int] = {}
    for view in views:
        category_id = category_of.get(view.fact_id)
        if category_id is None:
            continue
        category_counts[category_id] = category_counts.get(category_id, 0) + 1

    if not category_counts:
        return {}

    max_count = max(category_counts.values())
    return {
        category_id: AFFINITY_BASE + (count / max_count) * AFFINITY_SPAN
        for category_id, count in category_counts.items()
    }


def engagement_weight(engagement: Optional[CategoryEngagement], now: datetime) -> float:
    """
    Category weight for a category-scoped feed, from the subject's engagement
    with that one category. Defaults to 0.5 without engagement.
    """
    if engagement is None:
        return DEFAULT_CATEGORY_WEIGHT

    duration = engagement.average_view_duration or DEFAULT_VIEW_DURATION
    completion = engagement.completion_rate or DEFAULT_COMPLETION_RATE
    time_decay = math.exp(-ENGAGEMENT_DECAY_RATE * days_between(engagement.last_viewed_at, now))

    engagement_score = engagement.view_count * 0.4 + (duration / 60) * 0.3 + completion * 0.3
    return (engagement_score * time_decay) / 10


def time_relevance(fact: Fact, patterns: PreferenceSignal) -> float:
    """exp(-|creation hour - preferred hour| / 6), in (0, 1]"""
    hour_diff = abs(fact.created_at.hour - patterns.preferred_time_of_day)
    return math.exp(-hour_diff / TIME_RELEVANCE_WIDTH_HOURS)


def recency_score(created_at: datetime, now: datetime) -> float:
    """Gentle decay for unseen facts by age"""
    return math.exp(-UNSEEN_DECAY_RATE * days_between(created_at, now))


def resurface_score(viewed_at: datetime, now: datetime) -> float:
    """Faster decay for previously seen facts, by days since the view"""
    return math.exp(-RESURFACE_DECAY_RATE * days_between(viewed_at, now))
