"""
Group-by statistics over the view ledger

The store hands over raw records; the joins and reductions run in pandas and
come back as typed records.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pandas as pd

from shared.models import utcnow

logger = logging.getLogger(__name__)

VIEW_COLUMNS = ['view_id', 'fact_id', 'user_id', 'anon_id', 'subject', 'viewed_at']
FACT_COLUMNS = ['fact_id', 'title', 'fact_description', 'category_id']
CATEGORY_COLUMNS = ['category_id', 'category_name', 'category_description', 'category_image']


@dataclass
class CategoryViewStat:
    category_id: str
    category_name: str
    category_description: str
    category_image: str
    total_views: int

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class FactViewStat:
    fact_id: str
    title: str
    description: str
    category_name: str
    total_views: int

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class UserViewActivity:
    user_id: str
    total_views: int
    unique_facts_viewed: int
    last_viewed: datetime
    avg_views_per_fact: float

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['last_viewed'] = self.last_viewed.isoformat()
        return data


@dataclass
class DailyActivity:
    date: str
    total_views: int
    unique_viewers: int
    unique_facts: int

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class HourlyActivity:
    hour: int
    total_views: int
    unique_viewers: int

    def to_dict(self) -> Dict:
        return asdict(self)


class Aggregator:
    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    def _views_frame(self) -> pd.DataFrame:
        rows = [
            {
                'view_id': v.id,
                'fact_id': v.fact_id,
                'user_id': v.user_id,
                'anon_id': v.anon_id,
                'subject': v.subject_identity,
                'viewed_at': v.viewed_at,
            }
            for v in self.store.all_views()
        ]
        frame = pd.DataFrame(rows, columns=VIEW_COLUMNS)
        frame['viewed_at'] = pd.to_datetime(frame['viewed_at'], utc=True)
        return frame

    def _facts_frame(self) -> pd.DataFrame:
        rows = [
            {
                'fact_id': f.id,
                'title': f.title,
                'fact_description': f.description,
                'category_id': f.category_id,
            }
            for f in self.store.all_facts()
        ]
        return pd.DataFrame(rows, columns=FACT_COLUMNS)

    def _categories_frame(self) -> pd.DataFrame:
        rows = [
            {
                'category_id': c.id,
                'category_name': c.name,
                'category_description': c.description,
                'category_image': c.image,
            }
            for c in self.store.find_categories()
        ]
        return pd.DataFrame(rows, columns=CATEGORY_COLUMNS)

    def _joined_views(self) -> pd.DataFrame:
        """Views joined to their fact and category; dangling references drop out"""
        joined = self._views_frame().merge(self._facts_frame(), on='fact_id', how='inner')
        return joined.merge(self._categories_frame(), on='category_id', how='inner')

    def view_counts(self, fact_ids: Iterable[str]) -> Dict[str, int]:
        """Per-fact view counts for the given facts (facts without views are absent)"""
        wanted = list(fact_ids)
        if not wanted:
            return {}
        views = self._views_frame()
        counts = views[views['fact_id'].isin(wanted)]['fact_id'].value_counts()
        return {fact_id: int(count) for fact_id, count in counts.items()}

    def top_categories_by_views(self, limit: int = 10) -> List[CategoryViewStat]:
        joined = self._joined_views()
        if joined.empty:
            return []

        grouped = (
            joined.groupby('category_id', as_index=False)
            .agg(
                category_name=('category_name', 'first'),
                category_description=('category_description', 'first'),
                category_image=('category_image', 'first'),
                total_views=('view_id', 'count'),
            )
            .sort_values(['total_views', 'category_name'], ascending=[False, True])
            .head(limit)
        )

        return [
            CategoryViewStat(
                category_id=row.category_id,
                category_name=row.category_name,
                category_description=row.category_description,
                category_image=row.category_image,
                total_views=int(row.total_views),
            )
            for row in grouped.itertuples(index=False)
        ]

    def top_facts_by_views(self, limit: int = 10) -> List[FactViewStat]:
        joined = self._joined_views()
        if joined.empty:
            return []

        grouped = (
            joined.groupby('fact_id', as_index=False)
            .agg(
                title=('title', 'first'),
                description=('fact_description', 'first'),
                category_name=('category_name', 'first'),
                total_views=('view_id', 'count'),
            )
            .sort_values(['total_views', 'title'], ascending=[False, True])
            .head(limit)
        )

        return [
            FactViewStat(
                fact_id=row.fact_id,
                title=row.title,
                description=row.description,
                category_name=row.category_name,
                total_views=int(row.total_views),
            )
            for row in grouped.itertuples(index=False)
        ]

    def user_view_activity(self, limit: int = 10) -> List[UserViewActivity]:
        """Authenticated users ranked by number of views"""
        views = self._views_frame()
        views = views[views['user_id'].notna()]
        if views.empty:
            return []

        grouped = (
            views.groupby('user_id', as_index=False)
            .agg(
                total_views=('view_id', 'count'),
                unique_facts_viewed=('fact_id', 'nunique'),
                last_viewed=('viewed_at', 'max'),
            )
            .sort_values(['total_views', 'user_id'], ascending=[False, True])
            .head(limit)
        )

        return [
            UserViewActivity(
                user_id=row.user_id,
                total_views=int(row.total_views),
                unique_facts_viewed=int(row.unique_facts_viewed),
                last_viewed=row.last_viewed.to_pydatetime(),
                avg_views_per_fact=float(row.total_views) / float(row.unique_facts_viewed),
            )
            for row in grouped.itertuples(index=False)
        ]

    def daily_activity(self, days: int = 30, now: Optional[datetime] = None) -> List[DailyActivity]:
        """Views per UTC day over the last `days` days, oldest first"""
        start = (now or self.clock()) - timedelta(days=days)
        views = self._views_frame()
        views = views[views['viewed_at'] >= pd.Timestamp(start)]
        if views.empty:
            return []

        views = views.assign(date=views['viewed_at'].dt.strftime('%Y-%m-%d'))
        grouped = (
            views.groupby('date', as_index=False)
            .agg(
                total_views=('view_id', 'count'),
                unique_viewers=('subject', 'nunique'),
                unique_facts=('fact_id', 'nunique'),
            )
            .sort_values('date')
        )

        return [
            DailyActivity(
                date=row.date,
                total_views=int(row.total_views),
                unique_viewers=int(row.unique_viewers),
                unique_facts=int(row.unique_facts),
            )
            for row in grouped.itertuples(index=False)
        ]

    def hourly_activity(self) -> List[HourlyActivity]:
        """Views per UTC hour of day across the whole ledger"""
        views = self._views_frame()
        if views.empty:
            return []

        views = views.assign(hour=views['viewed_at'].dt.hour)
        grouped = (
            views.groupby('hour', as_index=False)
            .agg(
                total_views=('view_id', 'count'),
                unique_viewers=('subject', 'nunique'),
            )
            .sort_values('hour')
        )

        return [
            HourlyActivity(
                hour=int(row.hour),
                total_views=int(row.total_views),
                unique_viewers=int(row.unique_viewers),
            )
            for row in grouped.itertuples(index=False)
        ]
