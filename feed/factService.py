"""
Fact reads, writes and personalized feeds
"""
import logging
import random
from datetime import datetime
from typing import Callable, List, Optional

from client.contentStore import FACT_SORT_FIELDS
from feed.aggregator import Aggregator
from feed.cacheManager import (
    CacheInvalidator,
    Mutation,
    category_feed_key,
    fact_count_key,
    fact_key,
    fact_list_key,
    feed_key,
    latest_key,
    read_through,
)
from feed.config import CANDIDATE_MULTIPLIER, INTEREST_BOOST, RECENT_VIEWS_WINDOW
from feed.preferences import engagement_weight, estimate_category_affinity, estimate_viewing_patterns
from feed.rankingEngine import affinity_weight, fixed_weight, rank_feed
from feed.viewLedger import ViewLedger
from shared.config import Config, get_config
from shared.errors import FeedError, InternalError, NotFoundError, ValidationError
from shared.models import Fact, FactPage, FeedResult, Subject, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('title', 'description', 'category_id', 'image')


class FactService:
    def __init__(
        self,
        store,
        cache,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.cache = cache
        self.config = config or get_config()
        self.clock = clock
        self.rng = rng or random.Random()
        self.ledger = ViewLedger(store, clock=clock)
        self.aggregator = Aggregator(store, clock=clock)
        self.invalidator = CacheInvalidator(cache)

        feed_config = self.config.get_feed_config()
        self.max_limit = int(feed_config.get('max_limit', 100))
        self.recent_views_window = int(feed_config.get('recent_views_window', RECENT_VIEWS_WINDOW))

    @property
    def ttl(self) -> int:
        return self.config.cache_ttl

    def _validate_limit(self, limit: int, maximum: Optional[int] = None) -> int:
        maximum = maximum or self.max_limit
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1 or limit > maximum:
            raise ValidationError(f"limit must be between 1 and {maximum}")
        return limit

    def _require_category(self, category_id: str):
        category = self.store.get_category(category_id) if category_id else None
        if category is None:
            raise NotFoundError('Category not found')
        return category

    # Writes

    def create(self, title: str, description: str, category_id: str, image: Optional[str] = None,
               created_at: Optional[datetime] = None) -> Fact:
        if not title or not title.strip() or not description or not description.strip():
            raise ValidationError('title and description are required')
        self._require_category(category_id)

        try:
            fact = self.store.insert_fact(
                title=title.strip(),
                description=description.strip(),
                category_id=category_id,
                image=image,
                created_at=parse_timestamp(created_at),
            )
        except Exception as e:
            logger.error(f"Failed to create fact: {e}")
            raise InternalError('Failed to create fact') from e

        logger.info(f"Created fact {fact.id} in category {category_id}")
        self.invalidator.invalidate(Mutation.FACT_CHANGED)
        self.update_category_facts_count(category_id)
        return fact

    def update(self, fact_id: str, **fields) -> Fact:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        for name in ('title', 'description'):
            if name in fields:
                if not fields[name] or not fields[name].strip():
                    raise ValidationError(f"{name} cannot be empty")
                fields[name] = fields[name].strip()

        current = self.store.get_fact(fact_id)
        if current is None:
            raise NotFoundError('Fact not found')
        if 'category_id' in fields:
            self._require_category(fields['category_id'])

        try:
            fact = self.store.update_fact(fact_id, **fields)
        except Exception as e:
            logger.error(f"Failed to update fact {fact_id}: {e}")
            raise InternalError('Failed to update fact') from e
        if fact is None:
            raise NotFoundError('Fact not found')

        self.invalidator.invalidate(Mutation.FACT_CHANGED, keys=[fact_key(fact_id)])
        self.update_category_facts_count(fact.category_id)
        if current.category_id != fact.category_id:
            self.update_category_facts_count(current.category_id)
        return fact

    def delete(self, fact_id: str) -> None:
        try:
            fact = self.store.delete_fact(fact_id)
        except Exception as e:
            logger.error(f"Failed to delete fact {fact_id}: {e}")
            raise InternalError('Failed to delete fact') from e
        if fact is None:
            raise NotFoundError('Fact not found')

        logger.info(f"Deleted fact {fact_id}")
        self.invalidator.invalidate(Mutation.FACT_CHANGED, keys=[fact_key(fact_id)])
        self.update_category_facts_count(fact.category_id)

    def mark_as_viewed(
        self,
        fact_id: str,
        user_id: Optional[str] = None,
        anon_id: Optional[str] = None,
        view_duration: Optional[float] = None,
        completion_rate: Optional[float] = None,
    ) -> bool:
        """
        Record a view and drop the viewer's cached feeds

        Returns:
            True for a first view, False when the view was already recorded
        """
        if completion_rate is not None and not 0 <= completion_rate <= 1:
            raise ValidationError('completion_rate must be between 0 and 1')
        if view_duration is not None and view_duration < 0:
            raise ValidationError('view_duration cannot be negative')

        created = self.ledger.record_view(fact_id, user_id, anon_id, view_duration, completion_rate)
        self.invalidator.invalidate(Mutation.VIEW_RECORDED, identity=user_id or anon_id)
        return created

    # Category counts

    def update_category_facts_count(self, category_id: str) -> Optional[int]:
        """Recompute a category's denormalized facts_count from the store"""
        count = self.store.count_facts(category_id=category_id)
        if not self.store.set_category_facts_count(category_id, count):
            logger.warning(f"Category {category_id} no longer exists, facts_count not stored")
            count = None

        self.invalidator.invalidate(Mutation.FACTS_COUNT_CHANGED, category_id=category_id)
        return count

    def recalculate_all_category_facts_count(self) -> int:
        """Rebuild facts_count for every category. Returns the number of categories updated."""
        categories = self.store.find_categories()
        for category in categories:
            self.store.set_category_facts_count(category.id, self.store.count_facts(category_id=category.id))

        self.invalidator.invalidate(Mutation.FACT_CHANGED)
        for category in categories:
            self.invalidator.invalidate(Mutation.FACTS_COUNT_CHANGED, category_id=category.id)

        logger.info(f"Recalculated facts_count for {len(categories)} categories")
        return len(categories)

    def get_facts_count_by_category(self, category_id: str) -> int:
        self._require_category(category_id)
        return read_through(
            self.cache,
            fact_count_key(category_id),
            self.ttl,
            lambda: self.store.count_facts(category_id=category_id),
        )

    def get_total_facts_count(self) -> int:
        return read_through(self.cache, fact_count_key(), self.ttl, self.store.count_facts)

    # Reads

    def get_fact(self, fact_id: str) -> Fact:
        def load() -> Fact:
            fact = self.store.get_fact(fact_id)
            if fact is None:
                raise NotFoundError('Fact not found')
            return fact

        return read_through(self.cache, fact_key(fact_id), self.ttl, load, Fact.to_dict, Fact.from_dict)

    def get_facts(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
        start_date=None,
        end_date=None,
        sort_by: str = 'created_at',
        sort_order: str = 'desc',
    ) -> FactPage:
        """
        Paginated listing with search, category and creation-date filters

        Args:
            page: 1-based page number
            limit: Page size
            search: Case-insensitive text over title and description
            category_id: Restrict to one category
            start_date: Inclusive lower bound on creation time (ISO string or datetime)
            end_date: Inclusive upper bound on creation time
            sort_by: created_at, updated_at or title
            sort_order: asc or desc

        Returns:
            FactPage with per-fact view counts and the total match count
        """
        if not isinstance(page, int) or page < 1:
            raise ValidationError('page must be a positive integer')
        max_page_size = int(self.config.get_listing_config().get('max_page_size', 100))
        self._validate_limit(limit, max_page_size)
        if sort_by not in FACT_SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of {', '.join(FACT_SORT_FIELDS)}")
        if sort_order not in ('asc', 'desc'):
            raise ValidationError('sort_order must be asc or desc')
        try:
            start = parse_timestamp(start_date)
            end = parse_timestamp(end_date)
        except (ValueError, OverflowError):
            raise ValidationError('start_date and end_date must be ISO timestamps')
        search = search.strip() if search else None

        key = fact_list_key(
            page=page,
            limit=limit,
            search=search,
            category_id=category_id,
            start_date=start.isoformat() if start else None,
            end_date=end.isoformat() if end else None,
            sort_by=sort_by,
            sort_order=sort_order,
        )

        def load() -> FactPage:
            filters = dict(category_id=category_id, search=search, start_date=start, end_date=end)
            try:
                facts = self.store.find_facts(
                    **filters,
                    sort_by=sort_by,
                    descending=sort_order == 'desc',
                    skip=(page - 1) * limit,
                    limit=limit,
                )
                total = self.store.count_facts(**filters)
                view_counts = self.aggregator.view_counts(f.id for f in facts)
            except Exception as e:
                logger.error(f"Failed to list facts: {e}")
                raise InternalError('Failed to list facts') from e

            for fact in facts:
                fact.views = view_counts.get(fact.id, 0)
            return FactPage(facts=facts, total=total)

        return read_through(self.cache, key, self.ttl, load, FactPage.to_dict, FactPage.from_dict)

    def get_latest_facts(self, limit: int = 10, category_id: Optional[str] = None) -> FeedResult:
        """Unpersonalized newest-first page for callers without any identity"""
        self._validate_limit(limit)
        if category_id:
            self._require_category(category_id)

        def load() -> FeedResult:
            facts = self.store.find_facts(category_id=category_id, limit=limit)
            has_more = self.store.fact_exists(category_id=category_id, exclude_ids={f.id for f in facts})
            return FeedResult(facts=facts, has_more=has_more)

        key = latest_key(limit=limit, category_id=category_id)
        return read_through(self.cache, key, self.ttl, load, FeedResult.to_dict, FeedResult.from_dict)

    def get_feed(self, limit: int = 10, user_id: Optional[str] = None, anon_id: Optional[str] = None) -> FeedResult:
        """
        Personalized feed across all categories

        Raises:
            ValidationError: no subject, or limit out of range
            NotFoundError: the authenticated user does not exist
        """
        subject = Subject.resolve(user_id, anon_id)
        self._validate_limit(limit)

        key = feed_key(limit=limit, **subject.cache_params())
        return read_through(
            self.cache,
            key,
            self.ttl,
            lambda: self._build_feed(subject, limit),
            FeedResult.to_dict,
            FeedResult.from_dict,
        )

    def get_feed_by_category(
        self,
        category_id: str,
        limit: int = 10,
        user_id: Optional[str] = None,
        anon_id: Optional[str] = None,
    ) -> FeedResult:
        """
        Personalized feed restricted to one category

        Raises:
            ValidationError: no subject, or limit out of range
            NotFoundError: the category, the user or one of the user's
                interest categories does not exist
        """
        subject = Subject.resolve(user_id, anon_id)
        self._validate_limit(limit)

        key = category_feed_key(category_id=category_id, limit=limit, **subject.cache_params())
        return read_through(
            self.cache,
            key,
            self.ttl,
            lambda: self._build_feed(subject, limit, category_id=category_id),
            FeedResult.to_dict,
            FeedResult.from_dict,
        )

    def _get_interests(self, subject: Subject) -> List[str]:
        if not subject.is_authenticated:
            return []
        user = self.store.get_user(subject.user_id)
        if user is None:
            raise NotFoundError('User not found')
        return user.interests

    def _build_feed(self, subject: Subject, limit: int, category_id: Optional[str] = None) -> FeedResult:
        now = self.clock()

        if category_id is not None:
            self._require_category(category_id)
        interests = self._get_interests(subject)
        if category_id is not None:
            for interest in interests:
                if self.store.get_category(interest) is None:
                    raise NotFoundError(f"Interest category {interest} not found")

        try:
            viewed = self.ledger.get_viewed_fact_ids(subject)
            recent = self.ledger.get_recent_views(subject, self.recent_views_window)
            patterns = estimate_viewing_patterns(recent)

            if category_id is None:
                recent_facts = self.store.get_facts_by_ids({view.fact_id for view in recent})
                weight_fn = affinity_weight(estimate_category_affinity(recent, recent_facts), interests)
            else:
                weight = engagement_weight(self.ledger.get_category_engagement(subject, category_id), now)
                if category_id in interests:
                    weight *= INTEREST_BOOST
                weight_fn = fixed_weight(weight)

            unseen = self.store.find_facts(
                category_id=category_id,
                exclude_ids=viewed.keys(),
                sort_by='created_at',
                descending=True,
                limit=limit * CANDIDATE_MULTIPLIER,
            )

            def view_history():
                seen = self.store.get_facts_by_ids(viewed.keys())
                return [
                    (fact, viewed[fact.id]) for fact in seen
                    if category_id is None or fact.category_id == category_id
                ]

            facts = rank_feed(unseen, limit, weight_fn, patterns, view_history, now, self.rng)
            has_more = self.store.fact_exists(
                category_id=category_id,
                exclude_ids=set(viewed) | {fact.id for fact in facts},
            )
        except FeedError:
            raise
        except Exception as e:
            logger.error(f"Failed to build feed for {subject.identity}: {e}")
            raise InternalError('Failed to build feed') from e

        logger.info(f"Built feed for {subject.identity}: {len(facts)} facts, has_more={has_more}")
        return FeedResult(facts=facts, has_more=has_more)
