"""
Cache keys, read-through helper and invalidation for the fact feed

Every cached read is keyed by its namespace plus a deterministic JSON dump of
its parameters. Writes purge keys through a declarative mutation table after
the store write has committed; cache failures are logged, never raised.
"""
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

FACT_PREFIX = 'fact:'
CATEGORY_PREFIX = 'category:'
STATS_PREFIX = 'stats:'


def serialize_params(params: Dict[str, Any]) -> str:
    """Stable JSON for cache keys; None values are dropped"""
    return json.dumps(
        {key: value for key, value in params.items() if value is not None},
        sort_keys=True,
        separators=(',', ':'),
        default=str,
    )


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so a value only matches literally"""
    return ''.join('\\' + ch if ch in '*?[]\\' else ch for ch in value)


def fact_key(fact_id: str) -> str:
    return f"{FACT_PREFIX}item:{fact_id}"


def fact_list_key(**params) -> str:
    return f"{FACT_PREFIX}list:{serialize_params(params)}"


def feed_key(**params) -> str:
    return f"{FACT_PREFIX}feed:{serialize_params(params)}"


def category_feed_key(**params) -> str:
    return f"{FACT_PREFIX}category-feed:{serialize_params(params)}"


def latest_key(**params) -> str:
    return f"{FACT_PREFIX}latest:{serialize_params(params)}"


def fact_count_key(category_id: Optional[str] = None) -> str:
    if category_id:
        return f"{FACT_PREFIX}count:category:{category_id}"
    return f"{FACT_PREFIX}count:total"


def category_key(category_id: str) -> str:
    return f"{CATEGORY_PREFIX}{category_id}"


def category_list_key(**params) -> str:
    return f"{CATEGORY_PREFIX}list:{serialize_params(params)}"


def stats_key(name: str, **params) -> str:
    return f"{STATS_PREFIX}{name}:{serialize_params(params)}"


class Mutation(Enum):
    FACT_CHANGED = 'fact_changed'
    CATEGORY_CHANGED = 'category_changed'
    VIEW_RECORDED = 'view_recorded'
    FACTS_COUNT_CHANGED = 'facts_count_changed'
    INTERESTS_CHANGED = 'interests_changed'


# Mutation -> key patterns to purge. Templates are filled from the context
# passed to invalidate(); {identity} is the JSON-quoted, glob-escaped subject.
INVALIDATION_RULES: Dict[Mutation, Tuple[str, ...]] = {
    Mutation.FACT_CHANGED: (
        f"{FACT_PREFIX}list:*",
        f"{FACT_PREFIX}feed:*",
        f"{FACT_PREFIX}category-feed:*",
        f"{FACT_PREFIX}latest:*",
        f"{STATS_PREFIX}*",
    ),
    # Single facts, listings and feeds embed the category name
    Mutation.CATEGORY_CHANGED: (
        f"{CATEGORY_PREFIX}list:*",
        f"{FACT_PREFIX}item:*",
        f"{FACT_PREFIX}list:*",
        f"{FACT_PREFIX}feed:*",
        f"{FACT_PREFIX}category-feed:*",
        f"{FACT_PREFIX}latest:*",
        f"{STATS_PREFIX}*",
    ),
    Mutation.VIEW_RECORDED: (
        f"{FACT_PREFIX}feed:*{{identity}}*",
        f"{FACT_PREFIX}category-feed:*{{identity}}*",
        f"{STATS_PREFIX}*",
    ),
    Mutation.FACTS_COUNT_CHANGED: (
        f"{FACT_PREFIX}count:total",
        f"{FACT_PREFIX}count:category:{{category_id}}",
        f"{CATEGORY_PREFIX}*",
    ),
    Mutation.INTERESTS_CHANGED: (
        f"{FACT_PREFIX}feed:*{{identity}}*",
        f"{FACT_PREFIX}category-feed:*{{identity}}*",
    ),
}


def identity_pattern(identity: str) -> str:
    """Glob fragment matching a subject id as it appears in serialized params"""
    return escape_glob(json.dumps(identity))


class CacheInvalidator:
    def __init__(self, cache_client):
        self.cache = cache_client

    def invalidate(self, mutation: Mutation, keys: Iterable[str] = (), **context) -> bool:
        """
        Purge the cache entries a mutation made stale

        Args:
            mutation: Kind of write that just committed
            keys: Exact keys to delete (the mutated entity's own entry)
            **context: Values for the pattern templates (identity, category_id)

        Returns:
            True if every delete went through. False means some entries may
            be served stale until their TTL expires.
        """
        complete = True

        for key in keys:
            try:
                if not self.cache.delete(key):
                    complete = False
            except Exception as e:
                logger.error(f"Failed to delete cache key {key}: {e}")
                complete = False

        if 'identity' in context:
            context['identity'] = identity_pattern(context['identity'])

        for template in INVALIDATION_RULES[mutation]:
            pattern = template.format(**context)
            try:
                if self.cache.delete_by_pattern(pattern) is None:
                    complete = False
            except Exception as e:
                logger.error(f"Failed to invalidate {pattern}: {e}")
                complete = False

        if not complete:
            logger.warning(f"Cache invalidation for {mutation.value} incomplete, stale entries expire by TTL")
        return complete


def read_through(
    cache_client,
    key: str,
    ttl: int,
    loader: Callable[[], T],
    encode: Callable[[T], Any] = lambda value: value,
    decode: Callable[[Any], T] = lambda value: value,
) -> T:
    """
    Serve from cache, or compute, cache and return

    A cache failure on either side only costs the memoization.
    """
    cached = None
    try:
        cached = cache_client.get(key)
    except Exception as e:
        logger.error(f"Cache read failed for {key}: {e}")

    if cached is not None:
        try:
            return decode(cached)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed cache entry {key}: {e}")

    value = loader()

    try:
        cache_client.set(key, encode(value), ttl=ttl)
    except Exception as e:
        logger.error(f"Cache write failed for {key}: {e}")

    return value
