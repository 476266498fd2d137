"""
Dashboard statistics over facts, categories and the view ledger

Each statistic is cached on its own under the stats: namespace with the short
stats TTL; any fact, category or view write purges the whole namespace.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from feed.aggregator import Aggregator
from feed.cacheManager import read_through, stats_key
from shared.config import Config, get_config
from shared.errors import FeedError, InternalError, ValidationError
from shared.models import utcnow

logger = logging.getLogger(__name__)


def _encode_records(records) -> List[Dict]:
    return [record.to_dict() for record in records]


class StatsService:
    def __init__(
        self,
        store,
        cache,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache
        self.config = config or get_config()
        self.clock = clock
        self.aggregator = Aggregator(store, clock=clock)

        stats_config = self.config.get_stats_config()
        self.top_limit = int(stats_config.get('top_limit', 10))
        self.daily_days = int(stats_config.get('daily_days', 30))
        self.max_workers = int(stats_config.get('max_workers', 4))

    @property
    def ttl(self) -> int:
        return self.config.stats_cache_ttl

    def _cached(self, name: str, loader: Callable[[], Any], **params) -> Any:
        def load():
            try:
                return loader()
            except FeedError:
                raise
            except Exception as e:
                logger.error(f"Failed to compute {name} stats: {e}")
                raise InternalError('Failed to compute statistics') from e

        return read_through(self.cache, stats_key(name, **params), self.ttl, load)

    def _validate_limit(self, limit: int) -> int:
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
            raise ValidationError('limit must be a positive integer')
        return limit

    def get_total_facts(self) -> int:
        return self._cached('total_facts', self.store.count_facts)

    def get_total_categories(self) -> int:
        """Number of active categories"""
        return self._cached('total_categories', lambda: self.store.count_categories(is_active=True))

    def get_top_categories_by_views(self, limit: Optional[int] = None) -> List[Dict]:
        limit = self._validate_limit(self.top_limit if limit is None else limit)
        return self._cached(
            'top_categories',
            lambda: _encode_records(self.aggregator.top_categories_by_views(limit)),
            limit=limit,
        )

    def get_top_facts_by_views(self, limit: Optional[int] = None) -> List[Dict]:
        limit = self._validate_limit(self.top_limit if limit is None else limit)
        return self._cached(
            'top_facts',
            lambda: _encode_records(self.aggregator.top_facts_by_views(limit)),
            limit=limit,
        )

    def get_user_view_activity(self, limit: Optional[int] = None) -> List[Dict]:
        limit = self._validate_limit(self.top_limit if limit is None else limit)
        return self._cached(
            'user_activity',
            lambda: _encode_records(self.aggregator.user_view_activity(limit)),
            limit=limit,
        )

    def get_daily_activity_stats(self, days: Optional[int] = None) -> List[Dict]:
        """
        Views per day for the trailing window

        Args:
            days: Window length in days (defaults to stats.daily_days)

        Returns:
            One entry per day that had views, oldest first
        """
        days = self.daily_days if days is None else days
        if not isinstance(days, int) or isinstance(days, bool) or days < 1:
            raise ValidationError('days must be a positive integer')
        return self._cached(
            'daily_activity',
            lambda: _encode_records(self.aggregator.daily_activity(days)),
            days=days,
        )

    def get_hourly_activity_stats(self) -> List[Dict]:
        return self._cached('hourly_activity', lambda: _encode_records(self.aggregator.hourly_activity()))

    def get_all_stats(self) -> Dict[str, Any]:
        """
        Every dashboard statistic in one response

        The reads are independent, so they run concurrently on a thread pool
        and the first failure propagates once all of them have been joined.
        """
        jobs = {
            'total_facts': self.get_total_facts,
            'total_categories': self.get_total_categories,
            'top_categories': self.get_top_categories_by_views,
            'top_facts': self.get_top_facts_by_views,
            'user_activity': self.get_user_view_activity,
            'daily_activity': self.get_daily_activity_stats,
            'hourly_activity': self.get_hourly_activity_stats,
        }

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {name: executor.submit(job) for name, job in jobs.items()}
            stats = {name: future.result() for name, future in futures.items()}

        stats['generated_at'] = self.clock().isoformat()
        logger.info(f"Computed dashboard stats: {stats['total_facts']} facts, {stats['total_categories']} categories")
        return stats
