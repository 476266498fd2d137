from unittest.mock import patch

import pytest

from feed.cacheManager import stats_key
from shared.errors import InternalError, ValidationError


def test_totals(stats_service, category_service, science, history, make_fact):
    make_fact(science)
    make_fact(history)
    category_service.update(history.id, is_active=False)

    assert stats_service.get_total_facts() == 2
    assert stats_service.get_total_categories() == 1


def test_stats_are_cached_until_a_write(stats_service, fact_service, cache, science, make_fact):
    fact = make_fact(science)
    assert stats_service.get_total_facts() == 1
    assert cache.get(stats_key('total_facts')) == 1

    fact_service.mark_as_viewed(fact.id, anon_id='a1')
    assert cache.get(stats_key('total_facts')) is None

    assert stats_service.get_top_facts_by_views(limit=1)[0]['total_views'] == 1


def test_all_stats(stats_service, fact_service, science, make_fact):
    fact = make_fact(science, title='Sharks predate trees')
    fact_service.mark_as_viewed(fact.id, user_id='u1')

    stats = stats_service.get_all_stats()

    assert stats['total_facts'] == 1
    assert stats['total_categories'] == 1
    assert stats['top_facts'][0]['title'] == 'Sharks predate trees'
    assert stats['top_categories'][0]['category_name'] == 'Science'
    assert stats['user_activity'][0]['user_id'] == 'u1'
    assert stats['daily_activity'][0]['total_views'] == 1
    assert stats['hourly_activity'][0]['total_views'] == 1
    assert 'generated_at' in stats


def test_failures_surface_as_internal_errors(stats_service):
    with patch.object(stats_service.aggregator, 'hourly_activity', side_effect=RuntimeError('boom')):
        with pytest.raises(InternalError):
            stats_service.get_all_stats()


def test_invalid_windows(stats_service):
    with pytest.raises(ValidationError):
        stats_service.get_daily_activity_stats(days=-1)
    with pytest.raises(ValidationError):
        stats_service.get_top_facts_by_views(limit=-3)


def test_zero_is_not_treated_as_the_default(stats_service):
    with pytest.raises(ValidationError):
        stats_service.get_daily_activity_stats(days=0)
    with pytest.raises(ValidationError):
        stats_service.get_top_categories_by_views(limit=0)
    with pytest.raises(ValidationError):
        stats_service.get_user_view_activity(limit=0)
