"""
Category CRUD with read-through caching
"""
import logging
from typing import List, Optional

from client.contentStore import DuplicateKeyError
from feed.cacheManager import CacheInvalidator, Mutation, category_key, category_list_key, read_through
from shared.config import Config, get_config
from shared.errors import ConflictError, InternalError, NotFoundError, ValidationError
from shared.models import Category

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'description', 'image', 'is_active', 'sort_order')


def _encode_list(categories: List[Category]) -> list:
    return [category.to_dict() for category in categories]


def _decode_list(data: list) -> List[Category]:
    return [Category.from_dict(item) for item in data]


class CategoryService:
    def __init__(self, store, cache, config: Optional[Config] = None):
        self.store = store
        self.cache = cache
        self.config = config or get_config()
        self.invalidator = CacheInvalidator(cache)

    @property
    def ttl(self) -> int:
        return self.config.cache_ttl

    def create(self, name: str, description: str = '', image: str = '', is_active: bool = True,
               sort_order: int = 0) -> Category:
        if not name or not name.strip():
            raise ValidationError('name is required')

        try:
            category = self.store.insert_category(
                name=name,
                description=description,
                image=image,
                is_active=is_active,
                sort_order=sort_order,
            )
        except DuplicateKeyError:
            raise ConflictError('A category with this name already exists')
        except Exception as e:
            logger.error(f"Failed to create category: {e}")
            raise InternalError('Failed to create category') from e

        logger.info(f"Created category {category.id} ({category.name})")
        self.invalidator.invalidate(Mutation.CATEGORY_CHANGED)
        return category

    def find_all(self, is_active: Optional[bool] = None) -> List[Category]:
        """All categories (optionally only active/inactive ones) by sort order"""
        return read_through(
            self.cache,
            category_list_key(is_active=is_active),
            self.ttl,
            lambda: self.store.find_categories(is_active=is_active),
            _encode_list,
            _decode_list,
        )

    def get_active_categories(self) -> List[Category]:
        return self.find_all(is_active=True)

    def find_by_id(self, category_id: str) -> Category:
        def load() -> Category:
            category = self.store.get_category(category_id)
            if category is None:
                raise NotFoundError('Category not found')
            return category

        return read_through(
            self.cache, category_key(category_id), self.ttl, load, Category.to_dict, Category.from_dict
        )

    def update(self, category_id: str, **fields) -> Category:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if 'name' in fields and (not fields['name'] or not fields['name'].strip()):
            raise ValidationError('name cannot be empty')

        try:
            category = self.store.update_category(category_id, **fields)
        except DuplicateKeyError:
            raise ConflictError('A category with this name already exists')
        except Exception as e:
            logger.error(f"Failed to update category {category_id}: {e}")
            raise InternalError('Failed to update category') from e

        if category is None:
            raise NotFoundError('Category not found')

        logger.info(f"Updated category {category_id}")
        self.invalidator.invalidate(Mutation.CATEGORY_CHANGED, keys=[category_key(category_id)])
        return category

    def delete(self, category_id: str) -> None:
        try:
            category = self.store.delete_category(category_id)
        except Exception as e:
            logger.error(f"Failed to delete category {category_id}: {e}")
            raise InternalError('Failed to delete category') from e

        if category is None:
            raise NotFoundError('Category not found')

        logger.info(f"Deleted category {category_id}")
        self.invalidator.invalidate(Mutation.CATEGORY_CHANGED, keys=[category_key(category_id)])

        for user_id in self.store.remove_interest(category_id):
            self.invalidator.invalidate(Mutation.INTERESTS_CHANGED, identity=user_id)
        logger.debug(f"Removed category {category_id} from user interests")
