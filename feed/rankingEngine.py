"""
Core ranking engine for the fact feed

One ranking routine serves both the global feed and the category feed; the
caller supplies the candidate pool, the category weight and the view history.
"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from feed.config import (
    DEFAULT_CATEGORY_WEIGHT,
    DIVERSITY_BONUS,
    DIVERSITY_THRESHOLD,
    INTEREST_BOOST,
    JITTER_RANGE,
    RESURFACE_POOL_MULTIPLIER,
    RESURFACE_WEIGHTS,
    UNSEEN_WEIGHTS,
)
from feed.preferences import recency_score, resurface_score, time_relevance
from shared.models import Fact, PreferenceSignal

logger = logging.getLogger(__name__)

CategoryWeightFn = Callable[[Fact], float]
ViewHistoryFn = Callable[[], List[Tuple[Fact, datetime]]]


@dataclass
class ScoredFact:
    fact: Fact
    score: float


def affinity_weight(affinity: Dict[str, float], interests: Iterable[str]) -> CategoryWeightFn:
    """Category weight from the affinity map, boosted for declared interests"""
    interest_set = set(interests)

    def weight(fact: Fact) -> float:
        base = affinity.get(fact.category_id, DEFAULT_CATEGORY_WEIGHT)
        return base * INTEREST_BOOST if fact.category_id in interest_set else base

    return weight


def fixed_weight(value: float) -> CategoryWeightFn:
    """Same weight for every fact (category feed: one category, one weight)"""
    return lambda fact: value


def score_unseen(fact: Fact, category_weight: float, patterns: PreferenceSignal, now: datetime) -> float:
    w_category, w_recency, w_time = UNSEEN_WEIGHTS
    return (
        category_weight * w_category
        + recency_score(fact.created_at, now) * w_recency
        + time_relevance(fact, patterns) * w_time
    )


def score_resurfaced(
    fact: Fact,
    viewed_at: datetime,
    category_weight: float,
    patterns: PreferenceSignal,
    now: datetime,
    jitter: float,
) -> float:
    w_category, w_recency, w_time = RESURFACE_WEIGHTS
    base = (
        category_weight * w_category
        + resurface_score(viewed_at, now) * w_recency
        + time_relevance(fact, patterns) * w_time
    )
    return base * jitter


def calculate_content_diversity(facts: Sequence[Fact]) -> float:
    """Distinct categories / facts selected. An empty selection counts as fully diverse."""
    if not facts:
        return 1.0
    return len({fact.category_id for fact in facts}) / len(facts)


def select_with_diversity(scored: List[ScoredFact], limit: int) -> List[ScoredFact]:
    """
    Greedy pick from a descending-sorted list

    While the selection is dominated by few categories (diversity below the
    threshold), candidates from categories not yet picked compete with a
    bonus on their score for the next pick.
    """
    remaining = list(scored)
    selected: List[ScoredFact] = []

    while len(selected) < limit and remaining:
        diversity = calculate_content_diversity([item.fact for item in selected])

        if diversity < DIVERSITY_THRESHOLD:
            picked_categories = {item.fact.category_id for item in selected}

            def adjusted(item: ScoredFact) -> float:
                if item.fact.category_id in picked_categories:
                    return item.score
                return item.score * DIVERSITY_BONUS

            index = max(range(len(remaining)), key=lambda i: adjusted(remaining[i]))
            pick = remaining.pop(index)
            pick.score = adjusted(pick)
        else:
            pick = remaining.pop(0)

        selected.append(pick)

    return selected


def rank_feed(
    unseen: List[Fact],
    limit: int,
    category_weight: CategoryWeightFn,
    patterns: PreferenceSignal,
    view_history: ViewHistoryFn,
    now: datetime,
    rng: Optional[random.Random] = None,
) -> List[Fact]:
    """
    Order a page of facts for one subject

    Args:
        unseen: Up to 3x limit unseen candidates, newest first
        limit: Page size
        category_weight: Weight supplier for a fact's category
        patterns: Subject's viewing pattern
        view_history: Supplier of (fact, viewed_at) pairs the subject has
            seen; only called when there are too few unseen candidates
        now: Reference time for decay
        rng: Jitter source for re-surfaced facts

    Returns:
        Up to `limit` distinct facts. Unseen facts always come first.
    """
    if len(unseen) >= limit:
        scored = [
            ScoredFact(fact, score_unseen(fact, category_weight(fact), patterns, now))
            for fact in unseen
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        selected = select_with_diversity(scored, limit)

        logger.info(f"Ranked {len(unseen)} unseen candidates into {len(selected)} facts")
        return [item.fact for item in selected]

    # Too few unseen facts to rank: take them all and top up from history
    remaining = limit - len(unseen)
    history = sorted(view_history(), key=lambda pair: pair[1])
    oldest = history[:remaining * RESURFACE_POOL_MULTIPLIER]

    rng = rng or random.Random()
    low, high = JITTER_RANGE
    resurfaced = []
    for fact, viewed_at in oldest:
        jitter = low + rng.random() * (high - low)
        score = score_resurfaced(fact, viewed_at, category_weight(fact), patterns, now, jitter)
        resurfaced.append(ScoredFact(fact, score))
    resurfaced.sort(key=lambda item: item.score, reverse=True)
    resurfaced = resurfaced[:remaining]

    logger.info(f"Only {len(unseen)} unseen facts, re-surfacing {len(resurfaced)} viewed facts")
    return list(unseen) + [item.fact for item in resurfaced]
