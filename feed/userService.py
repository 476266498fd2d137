"""
Declared interests of authenticated users
"""
import logging
from typing import List

from feed.cacheManager import CacheInvalidator, Mutation
from shared.errors import NotFoundError, ValidationError
from shared.models import User

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, store, cache):
        self.store = store
        self.invalidator = CacheInvalidator(cache)

    def set_interests(self, user_id: str, interests: List[str]) -> User:
        """Replace a user's interests; every category must exist"""
        if not user_id:
            raise ValidationError('user id is required')

        interests = list(dict.fromkeys(interests or []))
        for category_id in interests:
            if self.store.get_category(category_id) is None:
                raise NotFoundError(f"Category {category_id} not found")

        user = self.store.upsert_user(user_id, interests)
        self.invalidator.invalidate(Mutation.INTERESTS_CHANGED, identity=user_id)
        logger.info(f"Set {len(interests)} interests for user {user_id}")
        return user

    def get_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError('User not found')
        return user
