"""Shared fixtures: in-memory Redis, a fresh content store and a controllable clock."""
import random
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from client.contentStore import Client as ContentStore
from client.redis import Client as RedisClient
from feed.categoryService import CategoryService
from feed.factService import FactService
from feed.statsService import StatsService
from feed.userService import UserService
from shared.config import Config, reset_config

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when a test advances it"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return Config(test_mode=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_server():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_server):
    return RedisClient(client=redis_server)


@pytest.fixture
def store(clock):
    return ContentStore(clock=clock)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def fact_service(store, cache, config, clock, rng):
    return FactService(store, cache, config, clock=clock, rng=rng)


@pytest.fixture
def category_service(store, cache, config):
    return CategoryService(store, cache, config)


@pytest.fixture
def stats_service(store, cache, config, clock):
    return StatsService(store, cache, config, clock=clock)


@pytest.fixture
def user_service(store, cache):
    return UserService(store, cache)


@pytest.fixture
def science(category_service):
    return category_service.create('Science', description='Physics, chemistry and biology', sort_order=1)


@pytest.fixture
def history(category_service):
    return category_service.create('History', description='People and events', sort_order=2)


@pytest.fixture
def make_fact(fact_service, clock):
    """Create facts one hour apart so creation order is unambiguous"""

    def _make(category, title=None, **fields):
        clock.advance(hours=1)
        number = len(fact_service.store.all_facts()) + 1
        return fact_service.create(
            title=title or f"Fact {number}",
            description=fields.pop('description', f"Description of fact {number}"),
            category_id=category.id,
            **fields,
        )

    return _make
