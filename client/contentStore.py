"""
In-process document store for facts, categories, users and view events

Stands in for the persistent document store behind the feed. Each public
method is atomic under a single lock; unique indexes raise DuplicateKeyError
the way a database driver would.
"""
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from shared.models import Category, Fact, User, ViewEvent, utcnow

logger = logging.getLogger(__name__)

FACT_SORT_FIELDS = ('created_at', 'updated_at', 'title')


class DuplicateKeyError(Exception):
    """Unique index violation"""

    def __init__(self, index: str, key):
        super().__init__(f"Duplicate key on {index}: {key}")
        self.index = index
        self.key = key


def new_id() -> str:
    return uuid.uuid4().hex


class Client:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.clock = clock
        self._lock = threading.RLock()
        self._categories: Dict[str, Category] = {}
        self._facts: Dict[str, Fact] = {}
        self._users: Dict[str, User] = {}
        self._views: Dict[str, ViewEvent] = {}
        # Unique indexes
        self._category_names: Dict[str, str] = {}
        self._view_keys: Dict[tuple, str] = {}

    # Categories

    def insert_category(self, name: str, **fields) -> Category:
        name = name.strip()
        with self._lock:
            if name in self._category_names:
                raise DuplicateKeyError('category.name', name)
            now = self.clock()
            category = Category(
                id=fields.pop('id', None) or new_id(),
                name=name,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self._categories[category.id] = category
            self._category_names[name] = category.id
            return replace(category)

    def get_category(self, category_id: str) -> Optional[Category]:
        with self._lock:
            category = self._categories.get(category_id)
            return replace(category) if category else None

    def find_categories(self, is_active: Optional[bool] = None) -> List[Category]:
        with self._lock:
            categories = [
                replace(c) for c in self._categories.values()
                if is_active is None or c.is_active == is_active
            ]
        categories.sort(key=lambda c: (c.sort_order, c.created_at))
        return categories

    def count_categories(self, is_active: Optional[bool] = None) -> int:
        with self._lock:
            return sum(1 for c in self._categories.values() if is_active is None or c.is_active == is_active)

    def update_category(self, category_id: str, **fields) -> Optional[Category]:
        with self._lock:
            current = self._categories.get(category_id)
            if current is None:
                return None
            if 'name' in fields:
                fields['name'] = fields['name'].strip()
                owner = self._category_names.get(fields['name'])
                if owner is not None and owner != category_id:
                    raise DuplicateKeyError('category.name', fields['name'])
            updated = replace(current, updated_at=self.clock(), **fields)
            self._categories[category_id] = updated
            if updated.name != current.name:
                del self._category_names[current.name]
                self._category_names[updated.name] = category_id
            return replace(updated)

    def set_category_facts_count(self, category_id: str, count: int) -> bool:
        with self._lock:
            current = self._categories.get(category_id)
            if current is None:
                return False
            self._categories[category_id] = replace(current, facts_count=count)
            return True

    def delete_category(self, category_id: str) -> Optional[Category]:
        with self._lock:
            category = self._categories.pop(category_id, None)
            if category is not None:
                self._category_names.pop(category.name, None)
            return category

    # Facts

    def insert_fact(self, title: str, description: str, category_id: str, **fields) -> Fact:
        with self._lock:
            now = self.clock()
            fact = Fact(
                id=fields.pop('id', None) or new_id(),
                title=title,
                description=description,
                category_id=category_id,
                image=fields.pop('image', None),
                created_at=fields.pop('created_at', None) or now,
                updated_at=now,
            )
            self._facts[fact.id] = fact
            return self._with_category(fact)

    def get_fact(self, fact_id: str) -> Optional[Fact]:
        with self._lock:
            fact = self._facts.get(fact_id)
            return self._with_category(fact) if fact else None

    def get_facts_by_ids(self, fact_ids: Iterable[str]) -> List[Fact]:
        with self._lock:
            return [self._with_category(self._facts[i]) for i in fact_ids if i in self._facts]

    def update_fact(self, fact_id: str, **fields) -> Optional[Fact]:
        with self._lock:
            current = self._facts.get(fact_id)
            if current is None:
                return None
            updated = replace(current, updated_at=self.clock(), **fields)
            self._facts[fact_id] = updated
            return self._with_category(updated)

    def delete_fact(self, fact_id: str) -> Optional[Fact]:
        with self._lock:
            fact = self._facts.pop(fact_id, None)
            return self._with_category(fact) if fact else None

    def find_facts(
        self,
        category_id: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        sort_by: str = 'created_at',
        descending: bool = True,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Fact]:
        """
        Query facts with the filters the listing and the feed need

        Args:
            category_id: Restrict to one category
            search: Case-insensitive substring over title and description
            start_date: Inclusive lower bound on created_at
            end_date: Inclusive upper bound on created_at
            exclude_ids: Fact ids to leave out (the viewed set)
            sort_by: One of FACT_SORT_FIELDS
            descending: Sort direction
            skip: Offset into the sorted result
            limit: Maximum number of facts (None for all)

        Returns:
            Matching facts with category names joined
        """
        if sort_by not in FACT_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field: {sort_by}")

        with self._lock:
            matches = self._filter_facts(category_id, search, start_date, end_date, exclude_ids)
            matches.sort(key=lambda f: (getattr(f, sort_by), f.id), reverse=descending)
            end = None if limit is None else skip + limit
            return [self._with_category(f) for f in matches[skip:end]]

    def count_facts(
        self,
        category_id: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        exclude_ids: Optional[Iterable[str]] = None,
    ) -> int:
        with self._lock:
            return len(self._filter_facts(category_id, search, start_date, end_date, exclude_ids))

    def fact_exists(self, category_id: Optional[str] = None, exclude_ids: Optional[Iterable[str]] = None) -> bool:
        """Existence probe: stops at the first fact outside exclude_ids"""
        excluded = set(exclude_ids or ())
        with self._lock:
            return any(
                f.id not in excluded and (category_id is None or f.category_id == category_id)
                for f in self._facts.values()
            )

    def _filter_facts(self, category_id, search, start_date, end_date, exclude_ids) -> List[Fact]:
        excluded = set(exclude_ids or ())
        needle = search.casefold() if search else None
        matches = []
        for fact in self._facts.values():
            if fact.id in excluded:
                continue
            if category_id is not None and fact.category_id != category_id:
                continue
            if start_date is not None and fact.created_at < start_date:
                continue
            if end_date is not None and fact.created_at > end_date:
                continue
            if needle and needle not in fact.title.casefold() and needle not in fact.description.casefold():
                continue
            matches.append(fact)
        return matches

    def _with_category(self, fact: Fact) -> Fact:
        category = self._categories.get(fact.category_id)
        return replace(fact, category_name=category.name if category else None)

    # Users

    def upsert_user(self, user_id: str, interests: Optional[List[str]] = None) -> User:
        with self._lock:
            user = User(id=user_id, interests=list(interests or []))
            self._users[user_id] = user
            return replace(user, interests=list(user.interests))

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user, interests=list(user.interests)) if user else None

    def remove_interest(self, category_id: str) -> List[str]:
        """Drop a category from every user's interests. Returns the affected user ids."""
        affected = []
        with self._lock:
            for user_id, user in self._users.items():
                if category_id in user.interests:
                    self._users[user_id] = replace(
                        user, interests=[i for i in user.interests if i != category_id]
                    )
                    affected.append(user_id)
        return affected

    # View events

    def insert_view(self, event: ViewEvent) -> ViewEvent:
        """
        Insert a view event, enforcing one event per (subject, fact)

        Raises:
            ValueError: the event has neither or both subject identifiers
            DuplicateKeyError: the subject already viewed this fact
        """
        if bool(event.user_id) == bool(event.anon_id):
            raise ValueError("View event needs exactly one of user_id or anon_id")

        key = ('user', event.user_id, event.fact_id) if event.user_id else ('anon', event.anon_id, event.fact_id)
        with self._lock:
            if key in self._view_keys:
                raise DuplicateKeyError('view.subject_fact', key)
            self._views[event.id] = event
            self._view_keys[key] = event.id
            return replace(event)

    def find_views(
        self,
        user_id: Optional[str] = None,
        anon_id: Optional[str] = None,
        newest_first: bool = True,
        limit: Optional[int] = None,
    ) -> List[ViewEvent]:
        with self._lock:
            views = [
                replace(v) for v in self._views.values()
                if (user_id is None or v.user_id == user_id) and (anon_id is None or v.anon_id == anon_id)
            ]
        views.sort(key=lambda v: (v.viewed_at, v.id), reverse=newest_first)
        return views if limit is None else views[:limit]

    def all_facts(self) -> List[Fact]:
        with self._lock:
            return [self._with_category(f) for f in self._facts.values()]

    def all_views(self) -> List[ViewEvent]:
        with self._lock:
            return [replace(v) for v in self._views.values()]
