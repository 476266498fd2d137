"""
Append-only ledger of (subject, fact) view events
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from client.contentStore import DuplicateKeyError, new_id
from feed.config import RECENT_VIEWS_WINDOW
from shared.errors import NotFoundError, ValidationError
from shared.models import CategoryEngagement, Subject, ViewEvent, utcnow

logger = logging.getLogger(__name__)


class ViewLedger:
    def __init__(self, store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def record_view(
        self,
        fact_id: str,
        user_id: Optional[str] = None,
        anon_id: Optional[str] = None,
        view_duration: Optional[float] = None,
        completion_rate: Optional[float] = None,
    ) -> bool:
        """
        Record that a subject viewed a fact

        Args:
            fact_id: Viewed fact
            user_id: Authenticated viewer
            anon_id: Anonymous viewer (exactly one of user_id/anon_id)
            view_duration: Seconds spent on the fact, if the client reports it
            completion_rate: Fraction of the fact consumed, if reported

        Returns:
            True if a new event was written, False if the subject had
            already viewed the fact

        Raises:
            ValidationError: neither or both identifiers given
            NotFoundError: the fact does not exist
        """
        subject = Subject(user_id=user_id, anon_id=anon_id)

        if self.store.get_fact(fact_id) is None:
            raise NotFoundError('Fact not found')

        event = ViewEvent(
            id=new_id(),
            fact_id=fact_id,
            user_id=subject.user_id,
            anon_id=subject.anon_id,
            viewed_at=self.clock(),
            view_duration=view_duration,
            completion_rate=completion_rate,
        )

        try:
            self.store.insert_view(event)
        except DuplicateKeyError:
            # A concurrent or earlier request already recorded this view
            logger.debug(f"View of {fact_id} by {subject.identity} already recorded")
            return False

        logger.info(f"Recorded view of {fact_id} by {subject.identity}")
        return True

    def get_viewed_fact_ids(self, subject: Subject) -> Dict[str, datetime]:
        """Map of fact id -> view timestamp for everything the subject has seen"""
        views = self.store.find_views(user_id=subject.user_id, anon_id=subject.anon_id)
        return {view.fact_id: view.viewed_at for view in views}

    def get_recent_views(self, subject: Subject, limit: int = RECENT_VIEWS_WINDOW) -> List[ViewEvent]:
        """Most recent views, newest first"""
        if limit < 1:
            raise ValidationError('limit must be positive')
        return self.store.find_views(
            user_id=subject.user_id,
            anon_id=subject.anon_id,
            newest_first=True,
            limit=limit,
        )

    def get_category_engagement(self, subject: Subject, category_id: str) -> Optional[CategoryEngagement]:
        """
        Aggregate the subject's views of facts in one category

        Returns:
            CategoryEngagement, or None when the subject has no views there
        """
        views = self.store.find_views(user_id=subject.user_id, anon_id=subject.anon_id)
        if not views:
            return None

        facts = {f.id: f for f in self.store.get_facts_by_ids({v.fact_id for v in views})}
        in_category = [v for v in views if v.fact_id in facts and facts[v.fact_id].category_id == category_id]
        if not in_category:
            return None

        durations = [v.view_duration for v in in_category if v.view_duration is not None]
        completions = [v.completion_rate for v in in_category if v.completion_rate is not None]

        return CategoryEngagement(
            view_count=len(in_category),
            last_viewed_at=max(v.viewed_at for v in in_category),
            average_view_duration=sum(durations) / len(durations) if durations else None,
            completion_rate=sum(completions) / len(completions) if completions else None,
        )
